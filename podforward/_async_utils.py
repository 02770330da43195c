# SPDX-FileCopyrightText: Copyright (c) 2025, Podforward Developers (See LICENSE for list)
# SPDX-License-Identifier: BSD 3-Clause License
#
# The blocking API drives the async port forward from a dedicated event loop thread.
#
# Callers of the blocking API may already be inside an event loop (notebooks, async test
# suites), so coroutines never run on the calling thread. Tunnels started this way live on
# the background loop and keep forwarding after the blocking call has returned.
from __future__ import annotations

import inspect
from functools import partial, wraps
from threading import Event, Thread
from typing import Awaitable, Callable, ParamSpec, TypeVar

import anyio
import anyio.from_thread

T = TypeVar("T")
C = TypeVar("C")
P = ParamSpec("P")


class Portal:
    """Process wide background thread that owns the event loop for the blocking API.

    Work is handed over through an :class:`anyio.from_thread.BlockingPortal`.
    """

    _instance: Portal
    _portal: anyio.from_thread.BlockingPortal
    _started: Event
    thread: Thread

    def __new__(cls):
        if not hasattr(cls, "_instance"):
            instance = super().__new__(cls)
            instance._started = Event()
            instance.thread = Thread(
                target=anyio.run,
                args=[instance._serve],
                name="PodforwardSyncRunnerThread",
                daemon=True,
            )
            cls._instance = instance
            instance.thread.start()
        return cls._instance

    async def _serve(self) -> None:
        async with anyio.from_thread.BlockingPortal() as portal:
            self._portal = portal
            self._started.set()
            await portal.sleep_until_stopped()

    def call(self, func: Callable[P, Awaitable[T]], *args, **kwargs) -> T:
        """Run ``func`` on the background loop and block until it returns."""
        self._started.wait()
        return self._portal.call(func, *args, **kwargs)


def run_sync(coro: Callable[P, Awaitable[T]]) -> Callable[P, T]:
    """Turn a coroutine function into a blocking function.

    Raises:
        TypeError: If ``coro`` is not a coroutine function.
    """
    if not inspect.iscoroutinefunction(coro):
        raise TypeError(f"Expected coroutine function, got {coro.__class__.__name__}")

    @wraps(coro)
    def blocking(*args: P.args, **kwargs: P.kwargs) -> T:
        return Portal().call(partial(coro, *args, **kwargs))

    return blocking


def sync(source: C) -> C:
    """Class decorator giving a blocking twin of every public coroutine method.

    Only public names are wrapped. Anything private or prefixed with ``async_`` stays a
    coroutine, which is why async methods must call each other through ``async_`` names.
    An async context manager also becomes a regular one.

    Examples:
        >>> @sync
        ... class Answer:
        ...     async def get(self):
        ...         return 42
        >>> Answer().get()
        42
    """
    source._asyncio = False  # type: ignore[attr-defined]
    for name in dir(source):
        attr = getattr(source, name)
        if name in ("__aenter__", "__aexit__"):
            blocking_name = "__enter__" if name == "__aenter__" else "__exit__"
            if not hasattr(source, blocking_name):
                setattr(source, blocking_name, run_sync(attr))
        elif (
            not name.startswith(("_", "async_"))
            and inspect.iscoroutinefunction(attr)
        ):
            setattr(source, name, run_sync(attr))
    return source
