"""Channel adapter component.

Exposes an IRCClient through the generic messaging-channel interface used by
the chat platform: initialize/shutdown, a connection info snapshot, sending
messages and subscribing to channel events. Also provides the message
sending tool offered to the platform.
"""

# SPDX-FileCopyrightText: Faidon Liambotis
# SPDX-FileCopyrightText: Wikimedia Foundation
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import dataclasses
import datetime
from collections.abc import Callable, Collection
from typing import Any

import structlog

from .client import IRCClient
from .config import SessionConfig
from .errors import ConnectError
from .session import ChatEvent, Phase, new_message_id

ChannelEventHandler = Callable[["ChannelEvent"], Any]


@dataclasses.dataclass(frozen=True)
class ChannelEvent:
    """An event emitted by the channel, wrapping e.g. a ChatEvent."""

    type: str
    platform: str
    conversation_id: str
    timestamp: datetime.datetime
    data: ChatEvent


@dataclasses.dataclass(frozen=True)
class ConnectionInfo:
    """Connection status, as reported to the chat platform."""

    status: str
    connected_since: str | None = None
    error_message: str | None = None
    platform_info: dict[str, Any] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass(frozen=True)
class SendResult:
    """The result of a sent message."""

    message_id: str
    chunks: int = 1


class IRCChannelAdapter:
    """The IRC messaging channel."""

    platform = "irc"
    display_name = "IRC"
    capabilities = ("text", "group_chat")

    log = structlog.get_logger("irclink.adapter")

    def __init__(self, client: IRCClient) -> None:
        self.client = client

    @classmethod
    def from_config(cls, config: SessionConfig) -> IRCChannelAdapter:
        """Create an adapter along with its client."""
        return cls(IRCClient(config))

    async def initialize(self) -> None:
        """Connect to the server.

        With auto-reconnect enabled, a failed first attempt is not fatal: it
        is logged and retried in the background.
        """
        try:
            await self.client.start()
        except ConnectError as exc:
            if not self.client.config.auto_reconnect:
                raise
            self.log.warning("Initial connection failed, will retry", error=str(exc))
        self.log.info("Channel initialized", platform=self.platform)

    async def shutdown(self) -> None:
        """Disconnect from the server."""
        await self.client.stop()
        self.log.info("Channel shut down", platform=self.platform)

    def connection_info(self) -> ConnectionInfo:
        """Return the current connection status."""
        status = self.client.status()

        if status.phase is Phase.READY:
            state = "connected"
        elif status.phase in (Phase.CONNECTING, Phase.HANDSHAKING):
            state = "connecting"
        elif self.client.running and self.client.attempt_failed and status.last_error:
            # the last connection attempt failed, even if another one is scheduled
            state = "error"
        elif self.client.reconnect_pending:
            state = "reconnecting"
        elif self.client.running and status.last_error:
            state = "error"
        else:
            state = "disconnected"

        connected_since = status.connected_since.isoformat() if status.connected_since else None
        return ConnectionInfo(
            status=state,
            connected_since=connected_since,
            error_message=status.last_error if state == "error" else None,
            platform_info={
                "host": status.host,
                "port": status.port,
                "tls": status.tls,
                "nick": status.nick,
                "channels": list(status.channels),
            },
        )

    async def send_message(self, conversation_id: str, text: str) -> SendResult:
        """Send a text message to a channel (e.g. #general) or a nickname."""
        text = text.strip()
        if not text:
            raise ValueError("IRC send_message requires a non-empty text")
        chunks = await self.client.send(conversation_id, text)
        return SendResult(new_message_id(), len(chunks))

    async def send_typing_indicator(self, conversation_id: str, is_typing: bool) -> None:
        """Do nothing; IRC has no typing indicators."""

    def on(self, handler: ChannelEventHandler, event_types: Collection[str] | None = None) -> Callable[[], None]:
        """Subscribe a handler to channel events. Returns an unsubscribe function."""

        def wrapped(event: ChatEvent) -> Any:
            channel_event = ChannelEvent("message", self.platform, event.conversation_id, event.timestamp, event)
            if event_types and channel_event.type not in event_types:
                return None
            return handler(channel_event)

        return self.client.subscribe(wrapped).unsubscribe

    def tools(self) -> list[SendMessageTool]:
        """Return the tools this channel offers to the chat platform."""
        return [SendMessageTool(self)]


@dataclasses.dataclass(frozen=True)
class ToolResult:
    """The outcome of a tool execution; failures are reported, not raised."""

    success: bool
    output: SendResult | None = None
    error: str | None = None


class SendMessageTool:
    """Tool sending a text message to an IRC channel or nickname."""

    id = "irc-send-message-v1"
    name = "ircSendMessage"
    display_name = "Send IRC Message"
    description = "Send a text message to an IRC channel (e.g. #general) or user nick."
    category = "communication"
    has_side_effects = True
    input_schema: dict[str, Any] = {
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "conversation_id": {"type": "string", "description": "Target channel (e.g. #general) or nick."},
            "text": {"type": "string", "description": "Message text."},
        },
        "required": ["conversation_id", "text"],
    }

    log = structlog.get_logger("irclink.adapter")

    def __init__(self, adapter: IRCChannelAdapter) -> None:
        self.adapter = adapter

    async def execute(self, conversation_id: str | None, text: str | None) -> ToolResult:
        """Send the message, returning a failed ToolResult on any error."""
        conversation_id = str(conversation_id or "").strip()
        text = str(text or "").strip()
        if not conversation_id:
            return ToolResult(False, error="conversation_id is required")
        if not text:
            return ToolResult(False, error="text is required")

        try:
            result = await self.adapter.send_message(conversation_id, text)
        except Exception as exc:
            self.log.warning("Sending message failed", conversation=conversation_id, error=str(exc))
            return ToolResult(False, error=str(exc))
        return ToolResult(True, output=result)
