from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable
from typing import Any


async def invoke_capability(
    method: Callable[[Any], Any], argument: Any, timeout_s: float | None
) -> Any:
    """Call a sync or async capability method bounded by ``timeout_s``.

    Coroutine functions run on the loop. Anything else runs in a worker
    thread, so a blocking capability neither stalls sibling fan-out sinks nor
    outlives its timeout. The thread itself is not interrupted; its late
    result is discarded.
    """
    async with asyncio.timeout(timeout_s):
        if inspect.iscoroutinefunction(method):
            return await method(argument)
        result = await asyncio.to_thread(method, argument)
        if inspect.isawaitable(result):
            result = await result
        return result


def effective_timeout(*candidates: float | None) -> float | None:
    for candidate in candidates:
        if candidate is not None:
            return candidate
    return None


__all__ = ["effective_timeout", "invoke_capability"]
