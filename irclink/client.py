"""IRC client component.

Owns the connection to an IRC server: opens the transport (plain or TLS),
feeds the received lines into an IRCSession, writes outgoing messages,
and reconnects after the server drops the connection.

All writes, both from the session (handshake, PONG, JOIN) and from the
outbound send() path, go through IRCClient._write, which is the only code
that touches the transport.
"""

# SPDX-FileCopyrightText: Faidon Liambotis
# SPDX-FileCopyrightText: Wikimedia Foundation
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import asyncio
import dataclasses
import datetime
import re
import ssl
from typing import Any

import prometheus_client
import structlog
from prometheus_client import Counter, Gauge

from .config import SessionConfig
from .dispatcher import ChatDispatcher, Listener, Subscription
from .errors import ConnectError, ConnectTimeoutError, NotConnectedError
from .message import MAX_LINE_LENGTH, IRCMessage, LineFramer
from .session import ChatEvent, IRCSession, Phase, SessionState

logger = structlog.get_logger()

# how long to wait for the QUIT message to be flushed when stopping
QUIT_TIMEOUT = 2.0


def chunk_text(text: str, limit: int, max_bytes: int | None = None) -> list[str]:
    """Split a message into chunks of at most limit characters.

    If max_bytes is given, chunks are also kept within that many bytes once
    encoded as UTF-8, without ever splitting a character. Line breaks are
    replaced with spaces, as a PRIVMSG cannot span lines. Returns an empty
    list for an empty or whitespace-only message.
    """
    if limit <= 0:
        raise ValueError("Chunk limit must be positive")
    # the longest UTF-8 character is 4 bytes
    if max_bytes is not None and max_bytes < 4:
        raise ValueError(f"Chunk byte limit too small: {max_bytes}")

    cleaned = re.sub(r"[\r\n]+", " ", text).strip()
    chunks = []
    start = 0
    while start < len(cleaned):
        end = min(start + limit, len(cleaned))
        if max_bytes is not None:
            while len(cleaned[start:end].encode("utf8", errors="replace")) > max_bytes:
                end -= 1
        chunks.append(cleaned[start:end])
        start = end
    return chunks


@dataclasses.dataclass(frozen=True)
class ConnectionStatus:
    """Point-in-time snapshot of the state of a client."""

    phase: Phase
    nick: str
    channels: tuple[str, ...]
    host: str
    port: int
    tls: bool
    connected_since: datetime.datetime | None = None
    last_error: str | None = None


class IRCClient:
    """A client maintaining a single connection to an IRC server."""

    def __init__(self, config: SessionConfig, dispatcher: ChatDispatcher | None = None) -> None:
        self.config = config
        self.log = logger.bind(host=config.host, port=config.port)

        # set up a few Prometheus metrics
        registry = prometheus_client.CollectorRegistry()
        self.metrics: dict[str, Gauge | Counter] = {
            "connected": Gauge("irclink_connected", "Whether the IRC session is registered", registry=registry),
            "connects": Counter("irclink_connects", "Count of connection attempts", ["result"], registry=registry),
            "reconnects": Counter("irclink_reconnects", "Count of automatic reconnections", registry=registry),
            "messages": Counter("irclink_messages", "Count of chat messages", ["direction"], registry=registry),
            "errors": Counter("irclink_errors", "Count of errors and exceptions", ["type"], registry=registry),
        }
        self.metrics["connected"].set_function(lambda: int(self.state.phase is Phase.READY))
        self.metrics_registry = registry

        self.dispatcher = dispatcher if dispatcher is not None else ChatDispatcher(self.metrics["errors"])
        self.state = SessionState(nick=config.nick)
        self.session = IRCSession(config, self._write, self._on_chat, self.state, on_ready=self._on_ready)

        self._framer = LineFramer()
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._ready = asyncio.Event()
        self._running = False
        self._reader_task: asyncio.Task[None] | None = None
        self._connect_task: asyncio.Task[tuple[asyncio.StreamReader, asyncio.StreamWriter]] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._attempt_failed = False
        self.background_tasks: set[asyncio.Task[Any]] = set()

    @property
    def running(self) -> bool:
        """Return True between start() and stop()."""
        return self._running

    @property
    def ready(self) -> bool:
        """Return True if the session is registered and messages can be sent."""
        return self.state.phase is Phase.READY

    @property
    def attempt_failed(self) -> bool:
        """Return True if the most recent connection attempt failed."""
        return self._attempt_failed

    @property
    def reconnect_pending(self) -> bool:
        """Return True if a reconnection has been scheduled but not started yet."""
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def status(self) -> ConnectionStatus:
        """Return a snapshot of the connection status."""
        return ConnectionStatus(
            phase=self.state.phase,
            nick=self.state.nick or self.config.nick,
            channels=self.config.channels,
            host=self.config.host,
            port=self.config.port,
            tls=self.config.tls,
            connected_since=self.state.connected_since,
            last_error=self.state.last_error,
        )

    def subscribe(self, listener: Listener) -> Subscription:
        """Subscribe a listener to incoming chat events."""
        return self.dispatcher.subscribe(listener)

    async def wait_ready(self, timeout: float | None = None) -> None:
        """Wait until the session is registered, or raise asyncio.TimeoutError."""
        await asyncio.wait_for(self._ready.wait(), timeout)

    async def start(self) -> None:
        """Connect to the server.

        Returns as soon as the transport is open; registration proceeds in the
        background. Raises ConnectError if a connection is already active or
        cannot be established, ConnectTimeoutError if it timed out.
        """
        if self.state.phase is not Phase.DISCONNECTED:
            raise ConnectError(f"Connection already active ({self.state.phase.value})")

        self._running = True
        self._cancel_reconnect()
        await self._connect()

    async def stop(self, reason: str = "shutdown") -> None:
        """Disconnect from the server and stop reconnecting.

        Sends a QUIT on a best-effort basis, then closes the transport. This
        never raises and can be called any number of times.
        """
        self._running = False
        self._cancel_reconnect()
        if self._connect_task and not self._connect_task.done():
            self._connect_task.cancel()

        writer = self._writer
        if writer is None and self._reader_task is None:
            self.session.connection_lost()
            self._ready.clear()
            return

        self.session.closing()
        if writer is not None and not writer.is_closing():
            try:
                writer.write(IRCMessage("QUIT", (), reason).encode())
                await asyncio.wait_for(writer.drain(), QUIT_TIMEOUT)
            except (OSError, asyncio.TimeoutError):
                pass

        if self._reader_task:
            self._reader_task.cancel()
            try:
                await self._reader_task  # give a chance to the task to cancel
            except asyncio.CancelledError:
                pass
            self._reader_task = None

        await self._close_transport()
        self.session.connection_lost()
        self._ready.clear()
        self.log.info("Disconnected", reason=reason)

    async def send(self, target: str, text: str) -> list[str]:
        """Send a message to a channel or a nickname.

        The message is split into chunks of at most config.chunk_size
        characters, each sent as a separate PRIVMSG, in order. Chunks are also
        kept within the 512-byte line limit once encoded, so that no text is
        lost with multi-byte characters. Returns the chunks that were sent; an
        empty message sends nothing.
        """
        if not self.ready or self._writer is None:
            raise NotConnectedError("IRC not connected")

        target = target.strip()
        if not target or " " in target:
            raise ValueError(f"Invalid IRC target: {target!r}")

        # everything but the text: "PRIVMSG <target> :" and the CRLF
        overhead = len(f"PRIVMSG {target} :".encode("utf8", errors="replace")) + 2
        chunks = chunk_text(text, self.config.chunk_size, MAX_LINE_LENGTH - overhead)
        for chunk in chunks:
            self._write(IRCMessage("PRIVMSG", [target], chunk))
        self.metrics["messages"].labels("outbound").inc(len(chunks))

        # all chunks have been written; wait for the transport to catch up
        await self._drain()
        return chunks


    async def _connect(self) -> None:
        """Open the transport and start the handshake."""
        self.session.connection_opening()
        self.log.info("Connecting", tls=self.config.tls, nick=self.config.nick)

        self._connect_task = asyncio.create_task(self._open_transport())
        try:
            reader, writer = await self._connect_task
        except asyncio.CancelledError:
            self.session.connection_lost()
            if self._running:
                raise  # we were cancelled, not stopped
            raise ConnectError("Connection attempt aborted") from None
        except asyncio.TimeoutError as exc:
            self._connect_failed("timeout")
            raise ConnectTimeoutError(self.config.connect_timeout) from exc
        except OSError as exc:
            self._connect_failed(exc.strerror or str(exc))
            raise ConnectError(f"Connection failed: {exc.strerror or exc}") from exc
        finally:
            self._connect_task = None

        if not self._running:
            # stop() was called right as the transport opened
            writer.close()
            self.session.connection_lost()
            raise ConnectError("Connection attempt aborted")

        self._reader, self._writer = reader, writer
        self._attempt_failed = False
        self._framer.reset()
        self.metrics["connects"].labels("success").inc()
        self.log.info("Connected")

        self._reader_task = asyncio.create_task(self._read_forever(reader))
        self.session.connection_made()

    async def _open_transport(self) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        ssl_context = None
        server_hostname = None
        if self.config.tls:
            ssl_context = ssl.create_default_context()
            server_hostname = self.config.host

        coro = asyncio.open_connection(
            self.config.host,
            self.config.port,
            ssl=ssl_context,
            server_hostname=server_hostname,
            # specs say length is 512 (including CRLF) - set limit to handle more, as implementations vary
            limit=MAX_LINE_LENGTH * 8,
        )
        return await asyncio.wait_for(coro, self.config.connect_timeout)

    def _connect_failed(self, error: str) -> None:
        self._attempt_failed = True
        self.session.connection_lost(error)
        self.metrics["connects"].labels("failure").inc()
        if error == "timeout":
            self.log.warning("Connection timed out", timeout=self.config.connect_timeout)
        else:
            self.log.warning("Connection failed", error=error)
        if self._running and self.config.auto_reconnect:
            self._schedule_reconnect()

    async def _read_forever(self, reader: asyncio.StreamReader) -> None:
        """Receive data from the server, until the connection is closed."""
        error = None
        while True:
            try:
                data = await reader.read(4096)
            except OSError as exc:
                error = exc.strerror or str(exc)
                break
            if not data:
                break

            for line in self._framer.feed(data):
                self._handle_line(line)

        await self._connection_lost(error)

    def _handle_line(self, bline: bytes) -> None:
        """Handle a single line of input."""
        line = bline.decode("utf8", errors="replace")
        self.log.debug("Data received", message=line)

        msg = IRCMessage.from_message(line)
        try:
            self.session.handle(msg)
        except Exception:
            self.metrics["errors"].labels("handler").inc()
            self.log.exception("Error while handling message", message=line)

    async def _connection_lost(self, error: str | None) -> None:
        """Clean up after the server closed the connection, and reconnect."""
        self.session.closing()
        await self._close_transport()
        # keep the reason given by a server ERROR, if any
        self.session.connection_lost(error or self.state.last_error or "Connection closed by server")
        self._ready.clear()
        self._reader_task = None

        if error:
            self.metrics["errors"].labels("transport").inc()
        self.log.warning("Connection lost", error=error)

        if self._running and self.config.auto_reconnect:
            self._schedule_reconnect()

    async def _close_transport(self) -> None:
        writer = self._writer
        self._reader, self._writer = None, None
        self._framer.reset()
        if writer is None:
            return
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass

    def _write(self, msg: IRCMessage) -> None:
        """Write a message to the transport; the single write path."""
        writer = self._writer
        if writer is None or writer.is_closing():
            self.log.debug("Data not sent (conn closed)", command=msg.command)
            return

        self.log.debug("Data sent", message=_redact(msg))
        writer.write(msg.encode())

    async def _drain(self) -> None:
        """Wait until the write buffer is below its high-water mark."""
        writer = self._writer
        if writer is None or writer.is_closing():
            return
        try:
            await writer.drain()
        except (ConnectionResetError, BrokenPipeError):
            pass  # the reader task handles the disconnection


    def _on_chat(self, event: ChatEvent) -> None:
        self.metrics["messages"].labels("inbound").inc()
        self.dispatcher.publish(event)

    def _on_ready(self) -> None:
        self._ready.set()

    def _schedule_reconnect(self) -> None:
        if self.reconnect_pending:
            return
        self.log.info("Scheduling reconnection", delay=self.config.reconnect_delay)
        task = asyncio.create_task(self._reconnect_later())
        self._reconnect_task = task
        self.background_tasks.add(task)
        task.add_done_callback(self.background_tasks.discard)

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _reconnect_later(self) -> None:
        await asyncio.sleep(self.config.reconnect_delay)
        # no longer pending; a failed attempt below will schedule a new one
        self._reconnect_task = None
        if not self._running or self.state.phase is not Phase.DISCONNECTED:
            return

        self.metrics["reconnects"].inc()
        try:
            await self._connect()
        except ConnectError:
            pass  # already logged


def _redact(msg: IRCMessage) -> str:
    """Return a loggable version of a message, without credentials."""
    if msg.command == "PASS":
        return "PASS ***"
    if msg.command == "PRIVMSG" and (msg.trailing or "").upper().startswith("IDENTIFY "):
        return f"PRIVMSG {' '.join(msg.params)} :IDENTIFY ***"
    return str(msg)
