"""
Health check schemas.
"""

from pydantic import BaseModel
from typing import Dict


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    uptime: str
    checks: Dict[str, str]
