import asyncio
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, TypeVar

from turnstile_gate.errors import ClientDisconnected

T = TypeVar("T")


async def call_with_disconnect_cancel(
    coro: Coroutine[Any, Any, T],
    is_disconnected: Callable[[], Awaitable[bool]],
    poll_interval: float,
) -> T:
    """Await ``coro``, cancelling it if the client disconnects first.

    Raises:
        ClientDisconnected: If ``is_disconnected`` reports True before ``coro`` finishes
    """
    task = asyncio.create_task(coro)

    try:
        while not task.done():
            # Check for a client disconnect
            if await is_disconnected():
                task.cancel()
                try:
                    await task  # Wait for cancellation to complete
                except asyncio.CancelledError:
                    pass
                raise ClientDisconnected("Client disconnected during verification")

            # Wait a short time before checking again
            await asyncio.wait({task}, timeout=poll_interval)
    except asyncio.CancelledError:
        # The host cancelled us, take the outbound call down with it
        task.cancel()
        raise

    return task.result()
