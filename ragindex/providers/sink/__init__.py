"""Status sink implementations."""

from ragindex.providers.sink.logging_sink import LoggingStatusSink

__all__ = ["LoggingStatusSink"]
