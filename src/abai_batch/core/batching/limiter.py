# -*- coding: utf-8 -*-

"""
Concurrency limiter bounding the number of in-flight provider calls.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from ..utils.settings import DEFAULT_CONCURRENCY, clamp_concurrency


class AcquireCancelled(Exception):
    """Raised by `acquire()` once the limiter has been cancelled."""


@dataclass(eq=False)
class Permit:
    """A concurrency slot granted by the limiter."""
    provider: Optional[str] = None
    released: bool = field(default=False, repr=False)


class ConcurrencyLimiter:
    """
    Global concurrency cap with optional per-provider caps.

    `in_use` and `peak_in_use` count granted, unreleased permits so tests
    can check that the cap is never exceeded.
    """

    def __init__(self, concurrency: int = DEFAULT_CONCURRENCY,
                 provider_limits: Optional[Dict[str, int]] = None):
        self.concurrency = clamp_concurrency(concurrency)
        if self.concurrency != concurrency:
            logging.warning(f"Concurrency {concurrency} clamped to {self.concurrency}")
        self._global = asyncio.Semaphore(self.concurrency)
        self._per_provider = {
            str(provider): asyncio.Semaphore(max(1, int(limit)))
            for provider, limit in (provider_limits or {}).items()
        }
        self._cancelled = asyncio.Event()
        self.in_use = 0
        self.peak_in_use = 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self):
        """Abort every pending and future `acquire()`."""
        self._cancelled.set()

    async def _acquire_or_cancel(self, semaphore: asyncio.Semaphore):
        if self.cancelled:
            raise AcquireCancelled()
        acquire_task = asyncio.ensure_future(semaphore.acquire())
        cancel_task = asyncio.ensure_future(self._cancelled.wait())
        try:
            await asyncio.wait({acquire_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            cancel_task.cancel()
            if acquire_task.done() and not acquire_task.cancelled():
                semaphore.release()
            else:
                acquire_task.cancel()
            raise
        cancel_task.cancel()

        if acquire_task.done():
            # A slot won together with the cancel is given back
            if self.cancelled:
                semaphore.release()
                raise AcquireCancelled()
            return
        acquire_task.cancel()
        raise AcquireCancelled()

    async def acquire(self, provider: Optional[str] = None) -> Permit:
        """
        Wait for a free slot.

        Args:
            provider (str | None): Provider of the call. When a per-provider
                limit is configured for it, a provider slot is taken too.

        Returns:
            Permit: The granted permit, to be passed to `release`.

        Raises:
            AcquireCancelled: If the limiter is cancelled before a slot is free.
        """
        provider_semaphore = self._per_provider.get(provider) if provider else None
        if provider_semaphore is not None:
            await self._acquire_or_cancel(provider_semaphore)
        try:
            await self._acquire_or_cancel(self._global)
        except BaseException:
            if provider_semaphore is not None:
                provider_semaphore.release()
            raise

        self.in_use += 1
        self.peak_in_use = max(self.peak_in_use, self.in_use)
        return Permit(provider=provider if provider_semaphore is not None else None)

    def release(self, permit: Permit):
        """Give a permit back. Releasing the same permit twice is a no-op."""
        if permit.released:
            return
        permit.released = True
        self.in_use -= 1
        self._global.release()
        if permit.provider is not None:
            self._per_provider[permit.provider].release()
