"""Archive retrieval."""

from .http import ArchiveFetcher

__all__ = ["ArchiveFetcher"]
