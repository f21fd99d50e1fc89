"""
Test factories for generating realistic test data.

Uses factory_boy for declarative test data generation.
"""

from .save_attempt import (
    SaveAttemptFactory,
    SavedAttemptFactory,
    CancelledAttemptFactory,
    history,
)

__all__ = [
    "SaveAttemptFactory",
    "SavedAttemptFactory",
    "CancelledAttemptFactory",
    "history",
]
