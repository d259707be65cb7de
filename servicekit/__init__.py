"""Service building blocks: configuration, event logging, in-process metrics and Redis access."""

__version__ = "0.1.0"

__all__ = ["config", "eventlog", "metrics", "redisstore"]