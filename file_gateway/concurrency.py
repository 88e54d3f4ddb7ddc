from __future__ import annotations

from typing import TYPE_CHECKING, Any

from anyio import to_thread

if TYPE_CHECKING:
    from collections.abc import Callable


async def run_sync(func: Callable[..., Any], /, *args: Any) -> Any:
    """Run a blocking callable on a worker thread."""
    return await to_thread.run_sync(func, *args)
