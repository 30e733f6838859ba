"""Data access repositories."""

from .base import BaseRepository
from .integration_repository import IntegrationRepository, RepositoryRepository, OutputRepository
from .trigger_repository import TriggerRepository

__all__ = [
    "BaseRepository",
    "IntegrationRepository",
    "RepositoryRepository",
    "OutputRepository",
    "TriggerRepository",
]
