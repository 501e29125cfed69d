"""Testing initialization."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator, Callable

import pytest
import structlog

from irclink import IRCClient, IRCMessage, SessionConfig


@pytest.fixture(autouse=True)
def fixture_configure_structlog() -> None:
    """Fixture to configure structlog. Currently just silences it entirely."""

    def dummy_processor(
        logger: logging.Logger, name: str, event_dict: structlog.types.EventDict
    ) -> structlog.types.EventDict:
        raise structlog.exceptions.DropEvent

    structlog.configure(processors=[dummy_processor])


async def wait_until(predicate: Callable[[], bool], timeout: float = 2) -> bool:
    """Poll until predicate() is true. Returns False if the timeout expired."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            return False
        await asyncio.sleep(0.01)
    return True


class FakeConnection:
    """The server side of a single client connection to FakeIRCServer."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.reader = reader
        self.writer = writer
        self.received: asyncio.Queue[IRCMessage] = asyncio.Queue()
        self.closed = asyncio.Event()

    async def read_forever(self) -> None:
        """Read lines from the client into the received queue."""
        try:
            while line := await self.reader.readline():
                self.received.put_nowait(IRCMessage.from_message(line.decode("utf8").rstrip("\r\n")))
        except OSError:
            pass
        finally:
            self.closed.set()

    def send(self, line: str) -> None:
        """Send a raw line to the client."""
        self.writer.write(line.encode("utf8") + b"\r\n")

    def drop(self) -> None:
        """Abruptly close the connection."""
        self.writer.close()

    async def expect(self, command: str, timeout: float = 2) -> IRCMessage | None:
        """Groks messages until one with the given command is found.

        If no matching message is received within a timeout, returns None.
        """
        while True:
            try:
                msg = await asyncio.wait_for(self.received.get(), timeout)
            except asyncio.TimeoutError:
                return None
            if msg.command == command:
                return msg

    async def register(self, nick: str = "testbot") -> None:
        """Wait for the client's registration and accept it."""
        assert await self.expect("USER")
        self.send(f":irc.example.org 001 {nick} :Welcome to the Example IRC Network {nick}")


class FakeIRCServer:
    """A minimal, scriptable IRC server listening on localhost."""

    def __init__(self) -> None:
        self.address = "127.0.0.1"
        self.port = 0
        self.connections: list[FakeConnection] = []
        self._accepted: asyncio.Queue[FakeConnection] = asyncio.Queue()
        self._server: asyncio.AbstractServer | None = None

    async def start(self) -> None:
        """Listen on a random free port."""
        self._server = await asyncio.start_server(self._handle, self.address, 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        conn = FakeConnection(reader, writer)
        self.connections.append(conn)
        self._accepted.put_nowait(conn)
        await conn.read_forever()

    async def accept(self, timeout: float = 2) -> FakeConnection:
        """Wait for the next client connection."""
        return await asyncio.wait_for(self._accepted.get(), timeout)

    async def close(self) -> None:
        """Close all connections and stop listening."""
        for conn in self.connections:
            conn.writer.close()
        if self._server:
            self._server.close()
            await self._server.wait_closed()


@pytest.fixture(name="ircserver")
async def fixture_ircserver() -> AsyncGenerator[FakeIRCServer, None]:
    """Fixture for a running FakeIRCServer."""
    server = FakeIRCServer()
    await server.start()
    yield server
    await server.close()


@pytest.fixture(name="session_config")
def fixture_session_config(ircserver: FakeIRCServer) -> SessionConfig:
    """Fixture representing an example configuration, pointing to the fake server."""
    return SessionConfig(
        host=ircserver.address,
        port=ircserver.port,
        nick="testbot",
        channels=("#one", "two"),
        connect_timeout=2,
        reconnect_delay=0.1,
    )


@pytest.fixture(name="ircclient")
async def fixture_ircclient(session_config: SessionConfig) -> AsyncGenerator[IRCClient, None]:
    """Fixture for an (unstarted) IRCClient, that is always stopped afterwards."""
    client = IRCClient(session_config)
    yield client
    await client.stop()
