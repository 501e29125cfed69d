"""IRC wire protocol component.

Frames a raw byte stream into lines, parses lines into IRCMessage instances
and serializes IRCMessage instances back into wire bytes. Also provides the
small subset of numeric replies that the client reacts to.
"""

# SPDX-FileCopyrightText: Faidon Liambotis
# SPDX-FileCopyrightText: Wikimedia Foundation
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import dataclasses
import enum
import re
from collections.abc import Sequence

# 512 including CRLF; RFC 2813, section 3.3
MAX_LINE_LENGTH = 512

_UNSAFE_CHARS = re.compile(r"[\r\n\0]")


class IRCNumeric(enum.Enum):
    """Base class for IRC numeric enums."""

    def __str__(self) -> str:
        """Return the numeric in the wire protocol format, e.g. 001."""
        return str(self.value).zfill(3)

    def __repr__(self) -> str:
        """Return the representation of the numeric, e.g. RPL_WELCOME."""
        return f"{self.__class__.__name__}_{self.name}"

    @classmethod
    def lookup(cls, command: str) -> IRCNumeric | None:
        """Return the RPL or ERR member for a three-digit command, or None."""
        if len(command) != 3 or not command.isdigit():
            return None
        for numeric_cls in (RPL, ERR):
            try:
                return numeric_cls(int(command))
            except ValueError:
                continue
        return None


@enum.unique
class RPL(IRCNumeric):
    """Standard IRC RPL_* replies, as defined in RFCs."""

    WELCOME = 1
    YOURHOST = 2
    CREATED = 3
    MYINFO = 4
    ISUPPORT = 5
    TOPIC = 332
    NAMREPLY = 353
    ENDOFNAMES = 366
    MOTD = 372
    MOTDSTART = 375
    ENDOFMOTD = 376


@enum.unique
class ERR(IRCNumeric):
    """Erroneous IRC ERR_* replies, as defined in RFCs."""

    NOSUCHNICK = 401
    NOSUCHCHANNEL = 403
    CANNOTSENDTOCHAN = 404
    NOMOTD = 422
    ERRONEUSNICKNAME = 432
    NICKNAMEINUSE = 433
    NOTREGISTERED = 451
    PASSWDMISMATCH = 464
    BANNEDFROMCHAN = 474


def strip_unsafe(value: str) -> str:
    """Remove characters that would terminate or corrupt a protocol line."""
    return _UNSAFE_CHARS.sub("", value)


class LineFramer:
    """Split a byte stream into lines, regardless of how it was chunked.

    Incomplete trailing fragments are kept and prepended to the data of the
    next feed() call. Lines longer than max_length are dropped in their
    entirety, as no valid line can be that long.
    """

    def __init__(self, max_length: int = MAX_LINE_LENGTH * 8) -> None:
        self.max_length = max_length
        self._buffer = b""
        self._overflow = False

    def feed(self, data: bytes) -> list[bytes]:
        """Add data to the buffer and return all complete, non-empty lines."""
        self._buffer += data
        *lines, self._buffer = self._buffer.split(b"\n")

        output = []
        for line in lines:
            if self._overflow:
                # the tail end of an oversized line
                self._overflow = False
                continue
            line = line.rstrip(b"\r")
            if len(line) > self.max_length:
                continue
            if line.strip():
                output.append(line)

        # same measure as for complete lines, i.e. without a trailing CR
        if len(self._buffer.rstrip(b"\r")) > self.max_length:
            self._buffer = b""
            self._overflow = True
        return output

    @property
    def pending(self) -> bytes:
        """Return the incomplete fragment waiting for its terminator."""
        return self._buffer

    def reset(self) -> None:
        """Drop any pending fragment, e.g. when the connection is reset."""
        self._buffer = b""
        self._overflow = False


@dataclasses.dataclass(frozen=True)
class Identity:
    """The sender of a message, as parsed from a nick!user@host prefix."""

    nick: str
    user: str | None = None
    host: str | None = None

    @classmethod
    def from_prefix(cls, prefix: str | None) -> Identity | None:
        """Parse a message prefix. Returns None if there is no usable nick."""
        if not prefix:
            return None

        nick_user, _, host = prefix.partition("@")
        nick, _, user = nick_user.partition("!")
        if not nick:
            return None
        return cls(nick, user or None, host or None)

    def __str__(self) -> str:
        """Return the identity in the wire protocol format."""
        ident = self.nick
        if self.user:
            ident += "!" + self.user
        if self.host:
            ident += "@" + self.host
        return ident


@dataclasses.dataclass(frozen=True)
class IRCMessage:
    """Represents an RFC 1459/2812 message.

    Can be either initialized:
    * with its constructor using a command, params, trailing and source
    * given a preformatted string, using the from_message() class method

    The final free-text parameter is kept separately in ``trailing``, and is
    None if the message did not have one. Does not support IRCv3 message tags.
    """

    command: str
    params: Sequence[str] = ()
    trailing: str | None = None
    source: str | None = None

    @classmethod
    def from_message(cls, message: str) -> IRCMessage:
        """Parse a formatted IRC message. Returns an instance of IRCMessage.

        This never raises: a line that cannot be parsed results in a message
        with an empty command, which callers are expected to ignore.
        """
        parts = message.strip("\r\n").split(" ")

        source = None
        if parts[0].startswith(":"):
            source = parts[0][1:] or None
            parts = parts[1:]

        # skip multiple spaces between the prefix and the command
        while parts and not parts[0]:
            parts.pop(0)
        if not parts or parts[0].startswith(":"):
            return cls("", (), None, source)

        command = parts[0].upper()
        original_params = parts[1:]
        params = []
        trailing = None

        while original_params:
            arg = original_params.pop(0)
            if arg.startswith(":"):
                trailing = " ".join([arg, *original_params])[1:]
                break
            elif arg:
                # skip multiple spaces in middle of message, as per RFC 1459
                params.append(arg)

        return cls(command, tuple(params), trailing, source)

    @property
    def args(self) -> list[str]:
        """Return all parameters, including the trailing one if present."""
        args = list(self.params)
        if self.trailing is not None:
            args.append(self.trailing)
        return args

    def __str__(self) -> str:
        """Generate an RFC-compliant formatted string for the instance.

        Line terminators and NUL bytes are stripped from every component, so
        that no caller-controlled value can inject another protocol line.
        """
        components = []

        if self.source:
            components.append(":" + strip_unsafe(self.source))

        components.append(strip_unsafe(str(self.command)))

        params = [strip_unsafe(str(param)) for param in self.params]
        trailing = strip_unsafe(self.trailing) if self.trailing is not None else None
        for i, param in enumerate(params):
            if param and " " not in param and param[0] != ":":
                components.append(param)
            else:
                # a "trailing"-like parameter can only be the last one
                trailing = " ".join(params[i:] + ([trailing] if trailing is not None else []))
                break

        if trailing is not None:
            components.append(":" + trailing)

        return " ".join(components)

    def encode(self, max_length: int = MAX_LINE_LENGTH) -> bytes:
        """Serialize the message into wire bytes, including the line terminator."""
        line = str(self).encode("utf8", errors="replace")
        if len(line) > max_length - 2:
            # do not cut a multi-byte character in half
            line = line[: max_length - 2].decode("utf8", errors="ignore").encode("utf8")
        return line + b"\r\n"
