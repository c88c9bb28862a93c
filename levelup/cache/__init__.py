"""In-memory caches shared across backend services."""

from .fallback_profiles import FallbackProfileCache

__all__ = ["FallbackProfileCache"]
