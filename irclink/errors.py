"""Exceptions raised by the IRC client."""

# SPDX-FileCopyrightText: Faidon Liambotis
# SPDX-FileCopyrightText: Wikimedia Foundation
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations


class IRCLinkError(Exception):
    """Base class for all errors raised by irclink."""


class ConnectError(IRCLinkError):
    """The transport was refused, failed or was aborted before it opened."""


class ConnectTimeoutError(ConnectError):
    """The transport did not open within the configured timeout."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"Connection timed out after {timeout:g}s")
        self.timeout = timeout


class NotConnectedError(IRCLinkError):
    """An operation that requires a registered session was attempted without one."""
