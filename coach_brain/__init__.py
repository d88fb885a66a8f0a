"""Coach brain: per-user knowledge aggregation, caching and prompt enrichment."""

__version__ = "1.0.0"
