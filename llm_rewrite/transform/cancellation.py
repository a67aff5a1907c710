"""
Cooperative cancellation for a single transformation run.

A CancellationToken is created per run, handed to every suspension point
(backend calls and retry delays) and checked at the top of each segment
iteration. Once cancelled it stays cancelled.
"""

import asyncio
import logging
from typing import Awaitable, Optional, TypeVar

from .errors import TransformCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Single-shot cancellation signal shared by one run."""

    def __init__(self):
        # Created on first await so a token can be built outside the running loop
        self._event: Optional[asyncio.Event] = None
        self._cancelled = False
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def _get_event(self) -> asyncio.Event:
        if self._event is None:
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        return self._event

    def cancel(self, reason: str = "Transformation cancelled by user.") -> None:
        """Trigger the token. Later calls are no-ops."""
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        if self._event is not None:
            self._event.set()
        logger.info(f"Cancellation requested: {reason}")

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        await self._get_event().wait()

    def raise_if_cancelled(self, partial_text: str = "") -> None:
        if self.cancelled:
            raise TransformCancelled(self._reason or "Transformation cancelled.", partial_text)

    async def sleep(self, seconds: float) -> None:
        """Sleep for `seconds`, waking early and raising if the token fires."""
        if seconds <= 0:
            self.raise_if_cancelled()
            return
        try:
            await asyncio.wait_for(self._get_event().wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """
        Await `awaitable` unless the token fires first.

        The pending request task is cancelled when the token wins, which
        aborts the underlying HTTP request for asyncio-based clients.

        Raises:
            TransformCancelled: if the token fired before the call finished.
        """
        self.raise_if_cancelled()

        call = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._get_event().wait())
        try:
            await asyncio.wait({call, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            # Our own task was cancelled (wait_for timeout, caller gave up)
            await _abort(call)
            raise
        finally:
            waiter.cancel()

        if call.done():
            return call.result()

        await _abort(call)
        raise TransformCancelled(self._reason or "Transformation cancelled.")


async def _abort(call: "asyncio.Future") -> None:
    """Cancel a pending request task and wait for it to unwind."""
    if call.done():
        if not call.cancelled():
            call.exception()
        return
    call.cancel()
    try:
        await call
    except asyncio.CancelledError:
        pass
    except Exception as e:
        logger.debug(f"Aborted request finished with error: {e}")
