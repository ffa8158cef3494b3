from __future__ import annotations


class SigmonError(Exception):
    """Base class for errors raised by the monitoring pipeline."""


class ConfigError(SigmonError):
    """Missing or invalid process configuration. Fatal at startup."""


class FeedError(SigmonError):
    """Upstream transport or backfill failure. Recovered by reconnecting."""


class RuleError(SigmonError):
    """A rule or condition definition that cannot be evaluated."""


class NotifyError(SigmonError):
    """A notification sink refused or failed a delivery."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status
