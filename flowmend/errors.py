# flowmend/errors.py
from typing import Optional


class FlowmendError(Exception):
    """Base class for every error raised by flowmend."""


class DocumentParseError(FlowmendError):
    """Text (generator output or a file on disk) did not contain a parseable workflow document."""

    def __init__(self, message: str, text: str = ""):
        super().__init__(message)
        self.text = text


class ConformanceTransportError(FlowmendError):
    """Network-level failure talking to the automation engine, after retries."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class CacheError(FlowmendError):
    """A cache entry is corrupted (e.g. it carries no outcome)."""


class ConfigError(FlowmendError):
    """A configuration value could not be interpreted."""
