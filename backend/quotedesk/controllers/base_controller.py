"""
Base controller class.
Controllers coordinate services and translate models into response schemas.
"""

from abc import ABC


class BaseController(ABC):
    """Base controller class for all controllers."""
