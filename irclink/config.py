"""Session configuration.

SessionConfig is the fully resolved, immutable set of parameters a client is
built with. It can be constructed directly, or from a section of an INI file
as parsed by configparser.
"""

# SPDX-FileCopyrightText: Faidon Liambotis
# SPDX-FileCopyrightText: Wikimedia Foundation
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import configparser
import dataclasses
import re
from collections.abc import Iterable

CHANNEL_PREFIXES = ("#", "&")


def normalize_channel(channel: str) -> str:
    """Return a channel name with a channel prefix, or "" for an empty name."""
    channel = channel.strip()
    if not channel:
        return ""
    if channel.startswith(CHANNEL_PREFIXES):
        return channel
    return "#" + channel


def is_channel(target: str) -> bool:
    """Return True if the target looks like a channel name, rather than a nickname."""
    return target.startswith(CHANNEL_PREFIXES)


@dataclasses.dataclass(frozen=True)
class NickServConfig:
    """Credentials used to identify with the network's nickname service."""

    password: str
    service: str = "NickServ"

    def __repr__(self) -> str:
        """Return a representation that does not leak the password."""
        return f"{self.__class__.__name__}(service={self.service!r}, password='***')"


@dataclasses.dataclass(frozen=True)
class SessionConfig:
    """Immutable configuration of an IRC session."""

    host: str
    nick: str
    channels: tuple[str, ...]
    port: int = 6667
    tls: bool = False
    username: str = ""
    realname: str = "IRCLink"
    password: str | None = dataclasses.field(default=None, repr=False)
    nickserv: NickServConfig | None = None
    auto_reconnect: bool = True
    connect_timeout: float = 15.0
    reconnect_delay: float = 3.0
    chunk_size: int = 350

    def __post_init__(self) -> None:
        host = self.host.strip()
        if not host:
            raise ValueError("IRC host is required")

        nick = re.sub(r"\s+", "", self.nick)
        if not nick:
            raise ValueError("IRC nick is required")

        channels = tuple(c for c in (normalize_channel(c) for c in self.channels) if c)
        if not channels:
            raise ValueError("At least one IRC channel is required")

        if not 0 < self.port < 65536:
            raise ValueError(f"Invalid IRC port: {self.port}")
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if self.connect_timeout <= 0:
            raise ValueError("connect_timeout must be positive")
        if self.reconnect_delay < 0:
            raise ValueError("reconnect_delay cannot be negative")

        # frozen dataclass; normalize via object.__setattr__
        object.__setattr__(self, "host", host)
        object.__setattr__(self, "nick", nick)
        object.__setattr__(self, "channels", channels)
        object.__setattr__(self, "username", self.username.strip() or nick)
        object.__setattr__(self, "realname", self.realname.strip() or "IRCLink")
        object.__setattr__(self, "password", self.password or None)

    @classmethod
    def from_section(cls, config: configparser.SectionProxy) -> SessionConfig:
        """Build a configuration from an INI section, e.g. [irc]."""
        nickserv = None
        nickserv_password = config.get("nickserv_password", fallback="").strip()
        if nickserv_password:
            nickserv_service = config.get("nickserv_service", fallback="").strip() or "NickServ"
            nickserv = NickServConfig(nickserv_password, nickserv_service)

        try:
            return cls(
                host=config.get("host", fallback=""),
                nick=config.get("nick", fallback=""),
                channels=tuple(split_csv(config.get("channels", fallback=""))),
                port=config.getint("port", fallback=6667),
                tls=config.getboolean("tls", fallback=False),
                username=config.get("username", fallback=""),
                realname=config.get("realname", fallback=""),
                password=config.get("password", fallback=None),
                nickserv=nickserv,
                auto_reconnect=config.getboolean("auto_reconnect", fallback=True),
                connect_timeout=config.getfloat("connect_timeout", fallback=15.0),
                reconnect_delay=config.getfloat("reconnect_delay", fallback=3.0),
                chunk_size=config.getint("chunk_size", fallback=350),
            )
        except ValueError as exc:
            # configparser's getint() & co also raise ValueError; add the section name
            raise ValueError(f"[{config.name}]: {exc}") from exc


def split_csv(value: str) -> Iterable[str]:
    """Split a comma-separated list, skipping empty elements."""
    return (item.strip() for item in value.split(",") if item.strip())
