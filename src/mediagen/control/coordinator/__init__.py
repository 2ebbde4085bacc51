"""Coordinator module - leader-elected background jobs."""

from mediagen.control.coordinator.base import CoordinatorBase, CoordinatorType
from mediagen.control.coordinator.reaper import StaleGenerationReaper

__all__ = [
    "CoordinatorBase",
    "CoordinatorType",
    "StaleGenerationReaper",
]
