"""Persistence repositories."""

from .learning_profiles import LearningProfileRepository, learning_profiles

__all__ = ["LearningProfileRepository", "learning_profiles"]
