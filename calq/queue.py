import json
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import httpx

from calq.config import settings
from calq.errors import ApiError, DeliveryError
from calq.logging_config import get_logger
from calq.metrics import API_CALL_LATENCY, API_CALLS_TOTAL


class Endpoint(str, Enum):
    TRACK = "Track"
    PROFILE = "Profile"
    TRANSFER = "Transfer"


@dataclass
class PendingCall:
    endpoint: Endpoint
    payload: dict[str, Any]
    retry_count: int = 0


class DeliveryQueue:
    """Holds API calls until flushed, then sends them one at a time in order.

    Calls that fail to reach the server are pushed to the back of the queue and
    retried within the same flush, up to ``max_retries`` times. Any response
    other than 200 is final.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        use_secure: Optional[bool] = None,
        max_queue_size: Optional[int] = None,
        max_retries: Optional[int] = None,
        connect_timeout: Optional[float] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        self.host = host or settings.api_host
        self.use_secure = settings.use_secure if use_secure is None else use_secure
        self.max_queue_size = settings.max_queue_size if max_queue_size is None else max_queue_size
        self.max_retries = settings.max_retries if max_retries is None else max_retries
        self.timeout = httpx.Timeout(
            settings.timeout_seconds if timeout is None else timeout,
            connect=settings.connect_timeout_seconds if connect_timeout is None else connect_timeout,
        )
        self._http_client = http_client
        self._queue: deque[PendingCall] = deque()
        self._log = get_logger(host=self.host)

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def pending(self) -> list[PendingCall]:
        return list(self._queue)

    def url_for(self, endpoint: Endpoint) -> str:
        scheme = "https" if self.use_secure else "http"
        return f"{scheme}://{self.host}/{endpoint.value}"

    def enqueue(self, endpoint: Endpoint, payload: dict[str, Any]) -> None:
        self._queue.append(PendingCall(endpoint=Endpoint(endpoint), payload=payload))
        if len(self._queue) >= self.max_queue_size:
            self.flush()

    def flush(self) -> list[PendingCall]:
        """Send everything queued. Returns the calls delivered, in delivery order."""
        delivered: list[PendingCall] = []
        while self._queue:
            # TODO: group consecutive calls to the same endpoint once the API accepts batches
            call = self._queue.popleft()
            try:
                response = self._send(call)
            except httpx.TransportError as e:
                if call.retry_count < self.max_retries:
                    call.retry_count += 1
                    self._queue.append(call)
                    API_CALLS_TOTAL.labels(endpoint=call.endpoint.value, outcome="retried").inc()
                    self._log.warning(
                        "api_call_retry",
                        endpoint=call.endpoint.value,
                        attempt=call.retry_count,
                        error=str(e),
                    )
                    continue
                API_CALLS_TOTAL.labels(endpoint=call.endpoint.value, outcome="failed").inc()
                self._log.error(
                    "api_call_failed",
                    endpoint=call.endpoint.value,
                    retries=call.retry_count,
                    error=str(e),
                )
                raise DeliveryError(self.host, call.endpoint.value, call.retry_count) from e

            if response.status_code != 200:
                API_CALLS_TOTAL.labels(endpoint=call.endpoint.value, outcome="rejected").inc()
                message = _error_message(response)
                self._log.error(
                    "api_call_rejected",
                    endpoint=call.endpoint.value,
                    status_code=response.status_code,
                    error=message,
                )
                raise ApiError(message, response.status_code, call.endpoint.value)

            API_CALLS_TOTAL.labels(endpoint=call.endpoint.value, outcome="delivered").inc()
            delivered.append(call)
        if delivered:
            self._log.debug("flush_complete", count=len(delivered))
        return delivered

    def _send(self, call: PendingCall) -> httpx.Response:
        body = json.dumps(call.payload).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "Content-Length": str(len(body)),
        }
        url = self.url_for(call.endpoint)
        start = time.perf_counter()
        try:
            if self._http_client is not None:
                return self._http_client.post(url, content=body, headers=headers, timeout=self.timeout)
            with httpx.Client(timeout=self.timeout) as client:
                return client.post(url, content=body, headers=headers)
        finally:
            API_CALL_LATENCY.labels(endpoint=call.endpoint.value).observe(time.perf_counter() - start)


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return response.text
