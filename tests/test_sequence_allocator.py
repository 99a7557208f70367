"""
Document number allocation tests.
"""

import asyncio
import logging
import re
from datetime import datetime
from typing import Dict, Optional

import pytest
from sqlalchemy import text

from quotedesk.db.errors import StoreNotProvisionedError, StoreUnavailableError
from quotedesk.db.repositories.document_number_repository import DocumentNumberRepository
from quotedesk.services.sequence_allocator import SequenceAllocator

FALLBACK_PATTERN = re.compile(r"^QT-2025-[0-9A-F]{8}$")


class InMemoryNumberStore:
    """Store fake with the same reserve-if-absent semantics as the database."""

    def __init__(self):
        self.numbers: Dict[str, Optional[int]] = {}
        self.fail_with: Optional[Exception] = None
        self.reserve_calls = 0

    async def max_sequence(self, prefix: str, period: int) -> Optional[int]:
        if self.fail_with:
            raise self.fail_with
        await asyncio.sleep(0)
        sequences = [s for n, s in self.numbers.items() if s is not None and n.startswith(f"{prefix}-{period}-")]
        return max(sequences) if sequences else None

    async def try_reserve(self, number, prefix, period, sequence, allocated_at, is_fallback=False) -> bool:
        if self.fail_with:
            raise self.fail_with
        self.reserve_calls += 1
        await asyncio.sleep(0)
        if number in self.numbers:
            return False
        self.numbers[number] = sequence
        return True


class AlwaysTakenStore(InMemoryNumberStore):
    async def try_reserve(self, number, prefix, period, sequence, allocated_at, is_fallback=False) -> bool:
        self.reserve_calls += 1
        return is_fallback


@pytest.fixture
def store() -> InMemoryNumberStore:
    return InMemoryNumberStore()


async def test_first_number_of_the_year(store, clock):
    allocator = SequenceAllocator(store, clock, prefix="QT", padding=6)

    allocated = await allocator.allocate()

    assert allocated.number == "QT-2025-000001"
    assert allocated.sequence == 1
    assert not allocated.degraded


async def test_sequence_continues_from_highest_used(store, clock):
    store.numbers["QT-2025-000041"] = 41
    store.numbers["QT-2024-000900"] = 900
    allocator = SequenceAllocator(store, clock, prefix="QT", padding=6)

    allocated = await allocator.allocate()

    assert allocated.number == "QT-2025-000042"


async def test_concurrent_allocations_are_unique(store, clock):
    allocator = SequenceAllocator(store, clock, prefix="QT", padding=6, max_attempts=50)

    results = await asyncio.gather(*(allocator.allocate() for _ in range(20)))

    numbers = [r.number for r in results]
    assert len(set(numbers)) == 20
    assert not any(r.degraded for r in results)
    assert sorted(r.sequence for r in results) == list(range(1, 21))


async def test_unavailable_store_degrades_to_random_suffix(store, clock, caplog):
    store.fail_with = StoreUnavailableError("down")
    allocator = SequenceAllocator(store, clock, prefix="QT", padding=6)

    with caplog.at_level(logging.WARNING, logger="quotedesk.services.sequence_allocator"):
        allocated = await allocator.allocate()

    assert allocated.degraded
    assert allocated.sequence is None
    assert allocated.cause == "StoreUnavailableError"
    assert FALLBACK_PATTERN.match(allocated.number)
    record = next(r for r in caplog.records if getattr(r, "degraded", False))
    assert record.cause == "StoreUnavailableError"


async def test_exhausted_collisions_fall_back(clock):
    store = AlwaysTakenStore()
    allocator = SequenceAllocator(store, clock, prefix="QT", padding=6, max_attempts=3)

    allocated = await allocator.allocate()

    assert allocated.degraded
    assert allocated.cause == "collisions_exhausted"
    assert FALLBACK_PATTERN.match(allocated.number)
    # three sequential attempts plus the fallback reservation
    assert store.reserve_calls == 4


async def test_repository_reserves_once(test_db_session, clock):
    repo = DocumentNumberRepository(test_db_session)

    first = await repo.try_reserve("QT-2025-000001", "QT", 2025, 1, clock.now())
    second = await repo.try_reserve("QT-2025-000001", "QT", 2025, 1, clock.now())
    fallback = await repo.try_reserve("QT-2025-ABCDEF12", "QT", 2025, None, clock.now(), is_fallback=True)

    assert first is True
    assert second is False
    assert fallback is True
    assert await repo.max_sequence("QT", 2025) == 1
    assert await repo.max_sequence("QT", 2026) is None


async def test_repository_reports_missing_table(test_db_session, clock):
    await test_db_session.execute(text("DROP TABLE document_numbers"))
    repo = DocumentNumberRepository(test_db_session)

    with pytest.raises(StoreNotProvisionedError):
        await repo.max_sequence("QT", 2025)


async def test_allocator_survives_missing_table(test_db_session, clock):
    await test_db_session.execute(text("DROP TABLE document_numbers"))
    allocator = SequenceAllocator(DocumentNumberRepository(test_db_session), clock, prefix="QT", padding=6)

    allocated = await allocator.allocate()

    assert allocated.degraded
    assert allocated.cause == "StoreNotProvisionedError"
    assert FALLBACK_PATTERN.match(allocated.number)
