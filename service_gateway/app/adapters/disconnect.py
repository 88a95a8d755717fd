"""
Tie outbound adapter calls to the lifetime of the inbound request.
"""

import asyncio
import contextlib
from typing import Awaitable, TypeVar

from fastapi import Request

from shared.errors import ClientDisconnectedError

T = TypeVar("T")


async def _wait_for_disconnect(request: Request) -> None:
    # Only valid once the request body has been consumed.
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


async def cancel_on_disconnect(request: Request, awaitable: Awaitable[T]) -> T:
    """Await ``awaitable`` but cancel it as soon as the caller disconnects.

    Raises ``ClientDisconnectedError`` when the caller went away first. If the
    server cannot report disconnects the call simply runs to completion and
    stays bounded by its own timeout.
    """
    task = asyncio.ensure_future(awaitable)
    watcher = asyncio.ensure_future(_wait_for_disconnect(request))
    try:
        done, _ = await asyncio.wait({task, watcher}, return_when=asyncio.FIRST_COMPLETED)
        if task in done:
            return task.result()

        if watcher.exception() is None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            raise ClientDisconnectedError()

        return await task
    finally:
        task.cancel()
        watcher.cancel()
