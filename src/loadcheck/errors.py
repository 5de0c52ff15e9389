from __future__ import annotations


class LoadcheckError(Exception):
    """Base class for every error raised by loadcheck."""


class ConfigError(LoadcheckError, ValueError):
    pass


class MetricError(LoadcheckError):
    pass


class MetricKindConflict(MetricError):
    def __init__(self, name: str, existing: str, requested: str) -> None:
        super().__init__(f"Metric {name!r} is already registered as {existing}, not {requested}")
        self.name = name
        self.existing = existing
        self.requested = requested


class UnknownMetricOrKindMismatch(MetricError):
    pass


class RequestError(LoadcheckError):
    def __init__(self, message: str, method: str, url: str) -> None:
        super().__init__(f"{method} {url}: {message}")
        self.method = method
        self.url = url


class NetworkError(RequestError):
    """Connection refused, DNS failure, timeout or a broken transfer."""


class ProtocolError(RequestError):
    """The request was malformed or the server answer was not valid HTTP."""


class ThresholdParseError(ConfigError):
    pass


class ScenarioAbort(LoadcheckError):
    """Raised by scenario code to stop the whole run."""
