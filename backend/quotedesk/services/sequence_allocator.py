"""
Document number allocation.

Numbers look like ``QT-2025-000042``. The allocator reads the highest sequence
used this year, proposes the next one and reserves it with an insert that is a
no-op on conflict, moving forward on collision. After a bounded number of
collisions, or when the store is unreachable or not yet provisioned, it falls
back to a random suffix so that numbering never blocks quotation creation.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

from quotedesk.core.clock import Clock, system_clock
from quotedesk.core.config import settings
from quotedesk.db.errors import StoreError

logger = logging.getLogger(__name__)

FALLBACK_SUFFIX_BYTES = 4
FALLBACK_RESERVE_ATTEMPTS = 3


class DocumentNumberStore(Protocol):
    async def max_sequence(self, prefix: str, period: int) -> Optional[int]:
        ...

    async def try_reserve(
        self,
        number: str,
        prefix: str,
        period: int,
        sequence: Optional[int],
        allocated_at: datetime,
        is_fallback: bool = False,
    ) -> bool:
        ...


@dataclass(frozen=True)
class AllocatedNumber:
    number: str
    sequence: Optional[int]
    degraded: bool = False
    cause: Optional[str] = None


class SequenceAllocator:
    """Allocates unique, period-scoped document numbers."""

    def __init__(
        self,
        store: DocumentNumberStore,
        clock: Clock = system_clock,
        prefix: Optional[str] = None,
        padding: Optional[int] = None,
        max_attempts: Optional[int] = None,
    ):
        self.store = store
        self.clock = clock
        self.prefix = prefix or settings.QUOTATION_NUMBER_PREFIX
        self.padding = padding or settings.QUOTATION_NUMBER_PADDING
        self.max_attempts = max_attempts or settings.QUOTATION_NUMBER_MAX_ATTEMPTS

    def format_number(self, period: int, sequence: int) -> str:
        return f"{self.prefix}-{period}-{sequence:0{self.padding}d}"

    async def allocate(self) -> AllocatedNumber:
        now = self.clock.now()
        period = now.year

        try:
            candidate = (await self.store.max_sequence(self.prefix, period) or 0) + 1
            for attempt in range(1, self.max_attempts + 1):
                number = self.format_number(period, candidate)
                if await self.store.try_reserve(number, self.prefix, period, candidate, now):
                    logger.debug(
                        f"Allocated document number {number}",
                        extra={"number": number, "attempt": attempt, "degraded": False},
                    )
                    return AllocatedNumber(number=number, sequence=candidate)
                logger.info(
                    f"Document number {number} already taken, retrying",
                    extra={"number": number, "attempt": attempt},
                )
                candidate += 1
        except StoreError as e:
            return await self._fallback(period, now, cause=type(e).__name__, store_available=False)

        return await self._fallback(period, now, cause="collisions_exhausted", store_available=True)

    async def _fallback(self, period: int, now: datetime, cause: str, store_available: bool) -> AllocatedNumber:
        number = self._random_number(period)
        if store_available:
            try:
                for _ in range(FALLBACK_RESERVE_ATTEMPTS):
                    if await self.store.try_reserve(number, self.prefix, period, None, now, is_fallback=True):
                        break
                    number = self._random_number(period)
            except StoreError as e:
                cause = f"{cause}+{type(e).__name__}"

        logger.warning(
            f"Document numbering degraded to random suffix: {number}",
            extra={"number": number, "degraded": True, "cause": cause},
        )
        return AllocatedNumber(number=number, sequence=None, degraded=True, cause=cause)

    def _random_number(self, period: int) -> str:
        return f"{self.prefix}-{period}-{secrets.token_hex(FALLBACK_SUFFIX_BYTES).upper()}"
