"""IRC session component.

Tracks the lifecycle of a single IRC session (handshake, registration,
channel joins) and reacts to the messages received by the server. The
session does not perform any I/O itself: outgoing messages are handed to a
``send`` callable, and chat messages are surfaced as ChatEvent instances
through an ``on_chat`` callable.
"""

# SPDX-FileCopyrightText: Faidon Liambotis
# SPDX-FileCopyrightText: Wikimedia Foundation
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import dataclasses
import datetime
import enum
import time
import uuid
from collections.abc import Callable

import structlog

from .config import SessionConfig, is_channel
from .message import IRCMessage, IRCNumeric, Identity


class Phase(enum.Enum):
    """Lifecycle phase of a session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    HANDSHAKING = "handshaking"
    READY = "ready"
    CLOSING = "closing"


class ConversationType(enum.Enum):
    """Whether a chat message was sent to a channel or directly to us."""

    GROUP = "group"
    DIRECT = "direct"


def new_message_id() -> str:
    """Return a new, unique message identifier."""
    return f"irc-{int(time.time() * 1000)}-{uuid.uuid4()}"


@dataclasses.dataclass(frozen=True)
class ChatEvent:
    """A chat message received from the network."""

    message_id: str
    sender: Identity
    target: str
    conversation_type: ConversationType
    conversation_id: str
    text: str
    timestamp: datetime.datetime

    @classmethod
    def create(cls, sender: Identity, target: str, text: str) -> ChatEvent:
        """Build an event for a message that has just been received."""
        if is_channel(target):
            conversation_type, conversation_id = ConversationType.GROUP, target
        else:
            conversation_type, conversation_id = ConversationType.DIRECT, sender.nick

        return cls(
            message_id=new_message_id(),
            sender=sender,
            target=target,
            conversation_type=conversation_type,
            conversation_id=conversation_id,
            text=text.strip(),
            timestamp=datetime.datetime.now(tz=datetime.timezone.utc),
        )


@dataclasses.dataclass
class SessionState:
    """Mutable state of the current connection."""

    phase: Phase = Phase.DISCONNECTED
    nick: str = ""
    last_error: str | None = None
    since: float | None = None  # time.monotonic() of registration
    connected_since: datetime.datetime | None = None

    def reset(self) -> None:
        """Return to the disconnected phase, keeping the last error."""
        self.phase = Phase.DISCONNECTED
        self.since = None
        self.connected_since = None


class IRCSession:
    """IRC session state machine.

    Messages received from the server are passed to ``handle``, which
    dispatches them to the ``handle_`` methods: by command name for verbs
    (e.g. handle_ping), by numeric name for numeric replies (e.g.
    handle_welcome for 001).
    """

    log = structlog.get_logger("irclink.session")

    def __init__(
        self,
        config: SessionConfig,
        send: Callable[[IRCMessage], None],
        on_chat: Callable[[ChatEvent], None],
        state: SessionState | None = None,
        on_ready: Callable[[], None] | None = None,
    ) -> None:
        self.config = config
        self.send = send
        self.on_chat = on_chat
        self.on_ready = on_ready
        self.state = state if state is not None else SessionState()
        if not self.state.nick:
            self.state.nick = config.nick

    @property
    def ready(self) -> bool:
        """Return True if the session has been registered and can be used."""
        return self.state.phase is Phase.READY

    def connection_opening(self) -> None:
        """Announce that a new transport is being opened."""
        self.state.reset()
        self.state.phase = Phase.CONNECTING
        self.state.nick = self.config.nick

    def connection_made(self) -> None:
        """Start the handshake, after the transport has been opened."""
        self.state.phase = Phase.HANDSHAKING
        self.state.nick = self.config.nick
        self.state.last_error = None

        if self.config.password:
            self.send(IRCMessage("PASS", [self.config.password]))
        self.send(IRCMessage("NICK", [self.state.nick]))
        self.send(IRCMessage("USER", [self.config.username, "0", "*"], self.config.realname))

    def closing(self) -> None:
        """Announce that the transport is being closed."""
        if self.state.phase is not Phase.DISCONNECTED:
            self.state.phase = Phase.CLOSING

    def connection_lost(self, error: str | None = None) -> None:
        """Return to the disconnected phase, after the transport was closed."""
        if error:
            self.state.last_error = error
        self.state.reset()

    def handle(self, msg: IRCMessage) -> None:
        """Handle a single message received from the server."""
        if not msg.command:
            # unparseable line
            return

        numeric = IRCNumeric.lookup(msg.command)
        name = numeric.name if numeric else msg.command
        handler = getattr(self, f"handle_{name.lower()}", None)
        if not handler:
            self.log.debug("No handler for command", command=msg.command, params=msg.args)
            return
        handler(msg)

    def handle_ping(self, msg: IRCMessage) -> None:
        """Answer server PING requests to keep the connection alive."""
        if msg.trailing is not None:
            token = msg.trailing
        elif msg.params:
            token = msg.params[0]
        else:
            token = ""
        self.send(IRCMessage("PONG", (), token))

    def handle_welcome(self, msg: IRCMessage) -> None:
        """Handle RPL_WELCOME, the end of the registration process."""
        # the server tells us what our nickname really is, e.g. if truncated
        if msg.params:
            self.state.nick = msg.params[0]

        self.state.phase = Phase.READY
        self.state.since = time.monotonic()
        self.state.connected_since = datetime.datetime.now(tz=datetime.timezone.utc)
        self.state.last_error = None
        self.log.info("Registered", nick=self.state.nick)

        for channel in self.config.channels:
            self.send(IRCMessage("JOIN", [channel]))
            self.log.debug("Joining channel", channel=channel)

        nickserv = self.config.nickserv
        if nickserv and nickserv.password:
            self.send(IRCMessage("PRIVMSG", [nickserv.service], f"IDENTIFY {nickserv.password}"))

        if self.on_ready:
            self.on_ready()

    def handle_nicknameinuse(self, msg: IRCMessage) -> None:
        """Handle ERR_NICKNAMEINUSE, by retrying with a slightly different nickname.

        There is no limit to the number of retries: every attempt results in a
        longer nickname, until the server accepts one (or truncates it to a
        nickname that is also in use, in which case it will eventually close
        the connection).
        """
        if self.ready:
            # a NICK change after registration; we do not initiate those
            return

        rejected = self.state.nick
        self.state.nick = rejected + "_"
        self.log.info("Nickname in use, retrying", rejected=rejected, nick=self.state.nick)
        self.send(IRCMessage("NICK", [self.state.nick]))

    def handle_nick(self, msg: IRCMessage) -> None:
        """Handle NICK, i.e. a nickname change forced by the server."""
        sender = Identity.from_prefix(msg.source)
        new_nick = msg.trailing if msg.trailing is not None else next(iter(msg.params), "")
        if not sender or not new_nick:
            return
        if sender.nick.lower() == self.state.nick.lower():
            self.log.info("Nickname changed", old=self.state.nick, nick=new_nick)
            self.state.nick = new_nick

    def handle_error(self, msg: IRCMessage) -> None:
        """Handle ERROR, typically sent by the server right before closing the link."""
        reason = msg.trailing if msg.trailing is not None else " ".join(msg.params)
        self.state.last_error = reason
        self.log.warning("Server error", reason=reason)

    def handle_privmsg(self, msg: IRCMessage) -> None:
        """Handle PRIVMSG, surfacing chat messages to a channel or to us."""
        sender = Identity.from_prefix(msg.source)
        if not sender:
            return

        args = msg.args
        try:
            target, text = args[0], args[1]
        except IndexError:
            return
        if not target or not text.strip():
            return

        if not is_channel(target) and target.lower() != self.state.nick.lower():
            self.log.debug("Ignoring message to unknown target", target=target)
            return

        self.on_chat(ChatEvent.create(sender, target, text))
