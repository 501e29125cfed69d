"""Test the IRC session state machine, without any I/O."""

from __future__ import annotations

import dataclasses

import pytest

from irclink import ChatEvent, ConversationType, Identity, IRCMessage, IRCSession, NickServConfig, Phase, SessionConfig


class Recorder:
    """Collects everything the session sends or emits."""

    def __init__(self) -> None:
        self.sent: list[IRCMessage] = []
        self.events: list[ChatEvent] = []
        self.ready = 0

    def send(self, msg: IRCMessage) -> None:
        self.sent.append(msg)

    def on_chat(self, event: ChatEvent) -> None:
        self.events.append(event)

    def on_ready(self) -> None:
        self.ready += 1

    def wire(self) -> list[str]:
        """Return the sent messages in wire format, and clear them."""
        lines = [str(msg) for msg in self.sent]
        self.sent.clear()
        return lines


@pytest.fixture(name="config")
def fixture_config() -> SessionConfig:
    """Fixture representing an example configuration."""
    return SessionConfig(host="irc.example.org", nick="testbot", channels=("#one", "&two"), realname="Test Bot")


@pytest.fixture(name="recorder")
def fixture_recorder() -> Recorder:
    """Fixture for an empty Recorder."""
    return Recorder()


def make_session(config: SessionConfig, recorder: Recorder) -> IRCSession:
    """Create a session connected to a recorder, past the transport opening."""
    session = IRCSession(config, recorder.send, recorder.on_chat, on_ready=recorder.on_ready)
    session.connection_opening()
    assert session.state.phase is Phase.CONNECTING
    session.connection_made()
    return session


def feed(session: IRCSession, line: str) -> None:
    """Feed a raw line to the session."""
    session.handle(IRCMessage.from_message(line))


def test_handshake(config: SessionConfig, recorder: Recorder) -> None:
    """Test the handshake commands sent when the transport opens."""
    session = make_session(config, recorder)
    assert session.state.phase is Phase.HANDSHAKING
    assert recorder.wire() == ["NICK testbot", "USER testbot 0 * :Test Bot"]


def test_handshake_password(config: SessionConfig, recorder: Recorder) -> None:
    """Test that the server password is sent first, if configured."""
    config = dataclasses.replace(config, password="s3cret", username="botuser")
    make_session(config, recorder)
    assert recorder.wire() == ["PASS s3cret", "NICK testbot", "USER botuser 0 * :Test Bot"]


def test_welcome(config: SessionConfig, recorder: Recorder) -> None:
    """Test that RPL_WELCOME makes the session ready and joins channels."""
    session = make_session(config, recorder)
    recorder.wire()

    feed(session, ":irc.example.org 001 testbot :Welcome to the network")
    assert session.ready
    assert session.state.phase is Phase.READY
    assert session.state.since is not None
    assert session.state.connected_since is not None
    assert recorder.ready == 1
    assert recorder.wire() == ["JOIN #one", "JOIN &two"]


def test_welcome_nickserv(config: SessionConfig, recorder: Recorder) -> None:
    """Test the identification with NickServ after RPL_WELCOME."""
    config = dataclasses.replace(config, nickserv=NickServConfig("hunter2", "AuthServ"))
    session = make_session(config, recorder)
    recorder.wire()

    feed(session, ":irc.example.org 001 testbot :Welcome")
    assert recorder.wire() == ["JOIN #one", "JOIN &two", "PRIVMSG AuthServ :IDENTIFY hunter2"]
    assert "hunter2" not in repr(config)


def test_nickname_in_use(config: SessionConfig, recorder: Recorder) -> None:
    """Test that a nickname collision results in exactly one retry, with a different nickname."""
    session = make_session(config, recorder)
    recorder.wire()

    feed(session, ":irc.example.org 433 * testbot :Nickname is already in use")
    assert recorder.wire() == ["NICK testbot_"]
    assert session.state.phase is Phase.HANDSHAKING

    feed(session, ":irc.example.org 433 * testbot_ :Nickname is already in use")
    assert recorder.wire() == ["NICK testbot__"]

    feed(session, ":irc.example.org 001 testbot__ :Welcome")
    assert session.ready
    assert session.state.nick == "testbot__"
    assert recorder.wire() == ["JOIN #one", "JOIN &two"]

    # a collision after registration is not ours to handle
    feed(session, ":irc.example.org 433 testbot__ other :Nickname is already in use")
    assert recorder.wire() == []
    assert session.state.nick == "testbot__"


def test_nickname_reset_on_reconnect(config: SessionConfig, recorder: Recorder) -> None:
    """Test that every new connection starts with the configured nickname."""
    session = make_session(config, recorder)
    feed(session, ":irc.example.org 433 * testbot :Nickname is already in use")
    assert session.state.nick == "testbot_"

    session.connection_lost("Connection reset by peer")
    assert session.state.phase is Phase.DISCONNECTED
    assert session.state.last_error == "Connection reset by peer"

    recorder.wire()
    session.connection_opening()
    session.connection_made()
    assert recorder.wire() == ["NICK testbot", "USER testbot 0 * :Test Bot"]
    assert session.state.last_error is None


@pytest.mark.parametrize("line", ["PING :abc123", "PING abc123", ":irc.example.org PING :abc123"])
def test_ping(config: SessionConfig, recorder: Recorder, line: str) -> None:
    """Test that PINGs are answered with a PONG, without changing phase."""
    session = make_session(config, recorder)
    recorder.wire()

    feed(session, line)
    assert recorder.wire() == ["PONG :abc123"]
    assert session.state.phase is Phase.HANDSHAKING

    feed(session, ":irc.example.org 001 testbot :Welcome")
    recorder.wire()
    feed(session, line)
    assert recorder.wire() == ["PONG :abc123"]
    assert session.state.phase is Phase.READY


def test_privmsg_channel(config: SessionConfig, recorder: Recorder) -> None:
    """Test that a message to a channel is surfaced as a group chat event."""
    session = make_session(config, recorder)
    feed(session, ":irc.example.org 001 testbot :Welcome")

    feed(session, ":alice!al@example.org PRIVMSG #one :  hello there  ")
    assert len(recorder.events) == 1
    event = recorder.events[0]
    assert event.sender == Identity("alice", "al", "example.org")
    assert event.target == "#one"
    assert event.conversation_type is ConversationType.GROUP
    assert event.conversation_id == "#one"
    assert event.text == "hello there"
    assert event.message_id.startswith("irc-")
    assert event.timestamp.tzinfo is not None


def test_privmsg_direct(config: SessionConfig, recorder: Recorder) -> None:
    """Test that a message to our nickname is surfaced as a direct chat event."""
    session = make_session(config, recorder)
    feed(session, ":irc.example.org 001 testbot :Welcome")

    feed(session, ":bob!b@example.org PRIVMSG TestBot :hi")
    assert len(recorder.events) == 1
    event = recorder.events[0]
    assert event.conversation_type is ConversationType.DIRECT
    assert event.conversation_id == "bob"
    assert event.target == "TestBot"

    # all message ids are unique
    feed(session, ":bob!b@example.org PRIVMSG testbot :hi again")
    assert recorder.events[0].message_id != recorder.events[1].message_id


@pytest.mark.parametrize(
    "line",
    [
        ":bob!b@example.org PRIVMSG someoneelse :not for us",
        ":bob!b@example.org PRIVMSG #one :   ",
        ":bob!b@example.org PRIVMSG #one",
        "PRIVMSG #one :no sender",
        ":bob!b@example.org NOTICE #one :notices are not chat messages",
        ":irc.example.org 372 testbot :- message of the day",
    ],
)
def test_privmsg_ignored(config: SessionConfig, recorder: Recorder, line: str) -> None:
    """Test that messages that are not chat messages for us are not surfaced."""
    session = make_session(config, recorder)
    feed(session, ":irc.example.org 001 testbot :Welcome")
    recorder.wire()

    feed(session, line)
    assert recorder.events == []
    assert recorder.wire() == []


def test_nick_change(config: SessionConfig, recorder: Recorder) -> None:
    """Test that a server-forced nickname change is tracked."""
    session = make_session(config, recorder)
    feed(session, ":irc.example.org 001 testbot :Welcome")

    feed(session, ":someoneelse!x@y NICK :whatever")
    assert session.state.nick == "testbot"

    feed(session, ":testbot!testbot@example.org NICK :Guest123")
    assert session.state.nick == "Guest123"

    # direct messages now go to the new nickname
    feed(session, ":bob!b@example.org PRIVMSG Guest123 :hi")
    assert len(recorder.events) == 1


def test_error(config: SessionConfig, recorder: Recorder) -> None:
    """Test that a server ERROR is recorded as the last error."""
    session = make_session(config, recorder)
    feed(session, "ERROR :Closing Link: testbot (K-Lined)")
    assert session.state.last_error == "Closing Link: testbot (K-Lined)"


def test_lifecycle(config: SessionConfig, recorder: Recorder) -> None:
    """Test the closing and disconnected phases."""
    session = make_session(config, recorder)
    feed(session, ":irc.example.org 001 testbot :Welcome")

    session.closing()
    assert session.state.phase is Phase.CLOSING
    assert not session.ready

    session.connection_lost()
    assert session.state.phase is Phase.DISCONNECTED
    assert session.state.since is None
    assert session.state.connected_since is None

    # closing() does not resurrect a disconnected session
    session.closing()
    assert session.state.phase is Phase.DISCONNECTED


@pytest.mark.parametrize("line", ["", ":irc.example.org", "UNKNOWNCOMMAND foo :bar", ":irc.example.org 999 x :y"])
def test_ignored(config: SessionConfig, recorder: Recorder, line: str) -> None:
    """Test that unknown or unparseable lines are ignored."""
    session = make_session(config, recorder)
    recorder.wire()
    feed(session, line)
    assert recorder.wire() == []
    assert session.state.phase is Phase.HANDSHAKING
