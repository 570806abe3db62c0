import asyncio
from typing import Awaitable, Optional, TypeVar

from chatcore.common.errors import GenerationCancelled

T = TypeVar("T")


class CancelToken:
    """Cooperative cancellation signal shared between a caller and a generation."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled by caller") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise GenerationCancelled(self.reason or "cancelled")

    async def wait(self) -> None:
        await self._event.wait()


async def cancellable_sleep(delay: float, token: Optional[CancelToken] = None) -> None:
    """Sleeps for ``delay`` seconds, returning early with GenerationCancelled."""
    if token is None:
        await asyncio.sleep(delay)
        return
    token.raise_if_cancelled()
    try:
        await asyncio.wait_for(token.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return
    token.raise_if_cancelled()


async def run_cancellable(awaitable: Awaitable[T], token: Optional[CancelToken] = None) -> T:
    """Awaits ``awaitable`` but aborts it as soon as ``token`` fires."""
    if token is None:
        return await awaitable
    token.raise_if_cancelled()

    call_task = asyncio.ensure_future(awaitable)
    cancel_task = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait(
            {call_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        call_task.cancel()
        cancel_task.cancel()
        raise

    if call_task in done:
        cancel_task.cancel()
        return call_task.result()

    call_task.cancel()
    await asyncio.gather(call_task, return_exceptions=True)
    raise GenerationCancelled(token.reason or "cancelled")
