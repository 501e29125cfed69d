"""IRCLink, a minimal IRC channel client.

IRCLink connects to an IRC server, joins a fixed set of channels and
translates between the IRC protocol and structured chat events. It is meant to
be embedded as the IRC channel of a chat-bot platform, but can also be run on
its own, logging the messages it receives.
"""

# Copyright © Faidon Liambotis
# Copyright © Wikimedia Foundation, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# SPDX-FileCopyrightText: Faidon Liambotis
# SPDX-FileCopyrightText: Wikimedia Foundation
# SPDX-License-Identifier: Apache-2.0

from ._version import __version__
from .adapter import ChannelEvent, ConnectionInfo, IRCChannelAdapter, SendMessageTool, SendResult, ToolResult
from .client import ConnectionStatus, IRCClient, chunk_text
from .config import NickServConfig, SessionConfig
from .dispatcher import ChatDispatcher, Subscription
from .errors import ConnectError, ConnectTimeoutError, IRCLinkError, NotConnectedError
from .main import run
from .message import ERR, RPL, Identity, IRCMessage, LineFramer
from .session import ChatEvent, ConversationType, IRCSession, Phase, SessionState

__all__ = [
    "ERR",
    "RPL",
    "ChannelEvent",
    "ChatDispatcher",
    "ChatEvent",
    "ConnectError",
    "ConnectTimeoutError",
    "ConnectionInfo",
    "ConnectionStatus",
    "ConversationType",
    "IRCChannelAdapter",
    "IRCClient",
    "IRCLinkError",
    "IRCMessage",
    "IRCSession",
    "Identity",
    "LineFramer",
    "NickServConfig",
    "NotConnectedError",
    "Phase",
    "SendMessageTool",
    "SendResult",
    "SessionConfig",
    "SessionState",
    "Subscription",
    "ToolResult",
    "__version__",
    "chunk_text",
    "run",
]
