"""Chat event dispatcher component.

Fans out ChatEvent instances to the registered listeners. Listeners may be
plain callables or coroutine functions; the latter are scheduled as tasks and
not awaited, so that a slow listener never holds up the connection.
"""

# SPDX-FileCopyrightText: Faidon Liambotis
# SPDX-FileCopyrightText: Wikimedia Foundation
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    import prometheus_client

    from .session import ChatEvent

Listener = Callable[["ChatEvent"], Any]


class Subscription:
    """Handle returned by ChatDispatcher.subscribe().

    Calling the handle (or its unsubscribe method) removes the listener.
    Subscriptions are removed by identity, so the same listener can be
    subscribed more than once and each subscription removed separately.
    """

    def __init__(self, dispatcher: ChatDispatcher, listener: Listener) -> None:
        self._dispatcher = dispatcher
        self.listener = listener

    def unsubscribe(self) -> None:
        """Remove the listener from the dispatcher. Idempotent."""
        self._dispatcher.remove(self)

    __call__ = unsubscribe

    @property
    def active(self) -> bool:
        """Return True if the listener is still subscribed."""
        return self._dispatcher.is_subscribed(self)

    def __repr__(self) -> str:
        """Return a user-readable description of the subscription."""
        return f"<{self.__class__.__name__} {self.listener!r}>"


class ChatDispatcher:
    """Dispatcher of chat events to any number of listeners."""

    log = structlog.get_logger("irclink.dispatcher")

    def __init__(self, errors: prometheus_client.Counter | None = None) -> None:
        self._subscriptions: list[Subscription] = []
        self.errors = errors
        self.running_tasks: set[asyncio.Task[Any]] = set()

    def __len__(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, listener: Listener) -> Subscription:
        """Subscribe a listener to all future events."""
        subscription = Subscription(self, listener)
        self._subscriptions.append(subscription)
        return subscription

    def remove(self, subscription: Subscription) -> None:
        """Remove a subscription, if it is still subscribed."""
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            pass

    def is_subscribed(self, subscription: Subscription) -> bool:
        """Return True if the subscription is currently registered."""
        return any(sub is subscription for sub in self._subscriptions)

    def publish(self, event: ChatEvent) -> None:
        """Publish an event to all listeners subscribed right now.

        Exceptions raised by listeners are logged and never propagated.
        """
        for subscription in list(self._subscriptions):
            try:
                result = subscription.listener(event)
            except Exception:
                self._listener_failed(subscription, event)
                continue

            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self.running_tasks.add(task)
                task.add_done_callback(lambda t, s=subscription: self._task_done(t, s, event))

    def _task_done(self, task: asyncio.Future[Any], subscription: Subscription, event: ChatEvent) -> None:
        self.running_tasks.discard(task)  # type: ignore[arg-type]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._listener_failed(subscription, event, exc)

    def _listener_failed(
        self, subscription: Subscription, event: ChatEvent, exc: BaseException | None = None
    ) -> None:
        if self.errors is not None:
            self.errors.labels("listener").inc()
        exc_info: Any = exc if exc is not None else True
        listener = repr(subscription.listener)
        self.log.error("Listener failed", listener=listener, message_id=event.message_id, exc_info=exc_info)

    async def drain(self) -> None:
        """Wait until all listener tasks scheduled so far have finished."""
        pending = [task for task in self.running_tasks if not task.done()]
        while pending:
            await asyncio.gather(*pending, return_exceptions=True)
            pending = [task for task in self.running_tasks if not task.done()]
