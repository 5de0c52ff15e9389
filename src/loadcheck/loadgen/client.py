from __future__ import annotations

import json as jsonlib
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Collection, Mapping

import httpx

from loadcheck.config import HttpConfig
from loadcheck.errors import NetworkError, ProtocolError
from loadcheck.metrics import MetricKind, MetricStore

logger = logging.getLogger(__name__)

HTTP_REQS = "http_reqs"
HTTP_REQ_DURATION = "http_req_duration"
HTTP_REQ_FAILED = "http_req_failed"
HTTP_REQ_CONNECTING = "http_req_connecting"
HTTP_REQ_TLS_HANDSHAKING = "http_req_tls_handshaking"
HTTP_REQ_WAITING = "http_req_waiting"
DATA_SENT = "data_sent"
DATA_RECEIVED = "data_received"

BUILTIN_METRICS: Mapping[str, MetricKind] = {
    HTTP_REQS: MetricKind.COUNTER,
    HTTP_REQ_DURATION: MetricKind.TREND,
    HTTP_REQ_FAILED: MetricKind.RATE,
    HTTP_REQ_CONNECTING: MetricKind.TREND,
    HTTP_REQ_TLS_HANDSHAKING: MetricKind.TREND,
    HTTP_REQ_WAITING: MetricKind.TREND,
    DATA_SENT: MetricKind.COUNTER,
    DATA_RECEIVED: MetricKind.COUNTER,
}

DEFAULT_EXPECTED_STATUSES = range(200, 400)


class ErrorType(str, Enum):
    TIMEOUT = "timeout"
    CONNECT = "connect"
    READ = "read"
    WRITE = "write"
    PROTOCOL = "protocol"
    INVALID_REQUEST = "invalid_request"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class Timings:
    """Per-phase timings in milliseconds.

    httpcore resolves names inside its TCP connect, so DNS time is part of
    ``connecting`` and ``dns`` stays 0.
    """

    duration: float
    dns: float = 0.0
    connecting: float = 0.0
    tls_handshaking: float = 0.0
    sending: float = 0.0
    waiting: float = 0.0
    receiving: float = 0.0


@dataclass(frozen=True, slots=True)
class Response:
    method: str
    url: str
    status: int
    headers: Mapping[str, str]
    body: bytes
    timings: Timings
    failed: bool
    error: str | None = None
    error_kind: ErrorType | None = None

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return jsonlib.loads(self.body)


def _error_type(exc: Exception) -> ErrorType:
    if isinstance(exc, httpx.TimeoutException):
        return ErrorType.TIMEOUT
    if isinstance(exc, httpx.ConnectError):
        return ErrorType.CONNECT
    if isinstance(exc, httpx.ReadError):
        return ErrorType.READ
    if isinstance(exc, httpx.WriteError):
        return ErrorType.WRITE
    if isinstance(exc, (httpx.ProtocolError, httpx.DecodingError)):
        return ErrorType.PROTOCOL
    # malformed URLs and misused request streams never reach the network
    if isinstance(exc, (httpx.InvalidURL, httpx.UnsupportedProtocol, httpx.StreamError)):
        return ErrorType.INVALID_REQUEST
    return ErrorType.OTHER


class _PhaseTrace:
    """Collects httpcore trace events as monotonic timestamps."""

    def __init__(self) -> None:
        self.marks: dict[str, float] = {}

    async def __call__(self, event_name: str, info: Mapping[str, Any]) -> None:
        # "connection.connect_tcp.started" -> "connect_tcp.started"
        self.marks[event_name.split(".", 1)[-1]] = time.perf_counter()

    def span(self, start: str, end: str) -> float:
        begin = self.marks.get(start)
        finish = self.marks.get(end)
        if begin is None or finish is None:
            return 0.0
        return max(0.0, (finish - begin) * 1000.0)

    def timings(self, duration_ms: float, finished: float) -> Timings:
        sent = "send_request_body.complete"
        if sent not in self.marks:
            sent = "send_request_headers.complete"
        headers_done = self.marks.get("receive_response_headers.complete")
        receiving = max(0.0, (finished - headers_done) * 1000.0) if headers_done is not None else 0.0
        return Timings(
            duration=duration_ms,
            connecting=self.span("connect_tcp.started", "connect_tcp.complete"),
            tls_handshaking=self.span("start_tls.started", "start_tls.complete"),
            sending=self.span("send_request_headers.started", sent),
            waiting=self.span(sent, "receive_response_headers.complete"),
            receiving=receiving,
        )


class HttpClient:
    """Issues requests for scenario code and feeds the built-in HTTP metrics.

    Every attempt records exactly one sample into ``http_req_duration``,
    ``http_req_failed`` and ``http_reqs`` before returning or raising. There
    are no retries at this level.
    """

    def __init__(self, client: httpx.AsyncClient, metrics: MetricStore, config: HttpConfig | None = None) -> None:
        self._client = client
        self._metrics = metrics
        self._config = config or HttpConfig()
        for name, kind in BUILTIN_METRICS.items():
            metrics.register(name, kind)

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        body: str | bytes | None = None,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
        timeout: float | None = None,
        expected_statuses: Collection[int] | None = None,
        throw: bool | None = None,
    ) -> Response:
        method = method.upper()
        target = self._resolve(url)
        merged = {**self._config.headers, **(headers or {})}
        expected = expected_statuses if expected_statuses is not None else DEFAULT_EXPECTED_STATUSES
        should_throw = self._config.throw if throw is None else throw
        trace = _PhaseTrace()
        started = time.perf_counter()
        try:
            resp = await self._client.request(
                method,
                target,
                headers=merged,
                content=body,
                json=json,
                params=params,
                timeout=timeout if timeout is not None else self._config.timeout_sec,
                extensions={"trace": trace},
            )
        except (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError) as exc:
            return self._failure(method, target, started, trace, _error_type(exc), exc, should_throw)
        finished = time.perf_counter()
        duration_ms = (finished - started) * 1000.0
        failed = resp.status_code not in expected
        timings = trace.timings(duration_ms, finished)
        self._record(timings, failed, len(resp.request.content or b""), len(resp.content or b""))
        if failed:
            logger.debug("%s %s returned unexpected status %s", method, target, resp.status_code)
        return Response(
            method=method,
            url=str(resp.url),
            status=resp.status_code,
            headers=dict(resp.headers),
            body=resp.content,
            timings=timings,
            failed=failed,
        )

    async def get(self, url: str, **kwargs: Any) -> Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> Response:
        return await self.request("POST", url, **kwargs)

    async def put(self, url: str, **kwargs: Any) -> Response:
        return await self.request("PUT", url, **kwargs)

    async def patch(self, url: str, **kwargs: Any) -> Response:
        return await self.request("PATCH", url, **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> Response:
        return await self.request("DELETE", url, **kwargs)

    def _resolve(self, url: str) -> str:
        if self._config.base_url and "://" not in url:
            return self._config.base_url.rstrip("/") + "/" + url.lstrip("/")
        return url

    def _failure(
        self,
        method: str,
        url: str,
        started: float,
        trace: _PhaseTrace,
        kind: ErrorType,
        exc: Exception,
        should_throw: bool,
    ) -> Response:
        finished = time.perf_counter()
        timings = trace.timings((finished - started) * 1000.0, finished)
        self._record(timings, True, 0, 0)
        message = str(exc) or type(exc).__name__
        logger.debug("%s %s failed (%s): %s", method, url, kind.value, message)
        if should_throw:
            error_cls = ProtocolError if kind in (ErrorType.PROTOCOL, ErrorType.INVALID_REQUEST) else NetworkError
            raise error_cls(message, method, url) from exc
        return Response(
            method=method,
            url=url,
            status=0,
            headers={},
            body=b"",
            timings=timings,
            failed=True,
            error=message,
            error_kind=kind,
        )

    def _record(self, timings: Timings, failed: bool, sent: int, received: int) -> None:
        self._metrics.record(HTTP_REQS, 1)
        self._metrics.record(HTTP_REQ_DURATION, timings.duration)
        self._metrics.record(HTTP_REQ_FAILED, failed)
        self._metrics.record(HTTP_REQ_CONNECTING, timings.connecting)
        self._metrics.record(HTTP_REQ_TLS_HANDSHAKING, timings.tls_handshaking)
        self._metrics.record(HTTP_REQ_WAITING, timings.waiting)
        self._metrics.record(DATA_SENT, sent)
        self._metrics.record(DATA_RECEIVED, received)
