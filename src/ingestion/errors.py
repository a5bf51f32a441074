"""
Error types raised inside the ingestion engine.
"""


class IngestionError(Exception):
    """Base class for ingestion errors"""


class TransportError(IngestionError):
    """A poll request or stream connection failed"""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ParseError(IngestionError, ValueError):
    """A payload could not be decoded into a MetricEvent"""
