"""
Base service class.
Services contain business logic and coordinate repositories within one session.
"""

from abc import ABC
from sqlalchemy.ext.asyncio import AsyncSession

from quotedesk.core.clock import Clock, system_clock


class BaseService(ABC):
    """Base class for services that work against the database."""

    def __init__(self, session: AsyncSession, clock: Clock = system_clock):
        self.session = session
        self.clock = clock
