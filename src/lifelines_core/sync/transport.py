"""
Remote transport - JSON over HTTP to the Lifelines server

One method, ``request``, turns every outcome into either a decoded JSON body
or a typed LifelinesError. Network failures and timeouts become
TransientError; nothing here retries, so control always returns to the sync
engine immediately.
"""

from typing import Any

import httpx

from lifelines_core.kernel.errors import LifelinesError, TransientError, error_from_payload
from lifelines_core.kernel.logging import get_correlation_id, get_logger
from lifelines_core.kernel.metrics import remote_calls_total

logger = get_logger(__name__)

IDEMPOTENCY_HEADER = "Idempotency-Key"
CORRELATION_HEADER = "X-Correlation-ID"


class RemoteClient:
    """
    Thin synchronous httpx wrapper

    Example:
        >>> remote = RemoteClient("http://127.0.0.1:4000/api", timeout=5.0)
        >>> remote.request("GET", "/health")
        {'ok': True, 'time': '...'}
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        transport: httpx.BaseTransport | None = None,
        token: str | None = None,
    ) -> None:
        """
        Args:
            base_url: API root, e.g. ``http://127.0.0.1:4000/api``
            timeout: Seconds before a call counts as a transient failure
            transport: Custom httpx transport (tests mount the Flask app here)
            token: Bearer session handle
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "RemoteClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _headers(self, idempotency_key: str | None) -> dict[str, str]:
        headers = {"Accept": "application/json", CORRELATION_HEADER: get_correlation_id()}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if idempotency_key:
            headers[IDEMPOTENCY_HEADER] = idempotency_key
        return headers

    def request(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
        params: dict[str, Any] | None = None,
        operation: str | None = None,
    ) -> Any:
        """
        Perform one call

        Args:
            method: HTTP method
            path: Path relative to the API root (``/projects/proj_1/award``)
            payload: JSON body
            idempotency_key: Sent as ``Idempotency-Key`` so a replayed write is applied once
            params: Query string
            operation: Metric label (defaults to ``"<METHOD> <path>"``)

        Returns:
            Decoded JSON body (None for an empty body)

        Raises:
            TransientError: Unreachable, timed out, or 5xx/408/429
            LifelinesError: The typed error the server reported
        """
        label = operation or method.upper()
        try:
            response = self._client.request(
                method.upper(),
                path.lstrip("/"),
                json=payload if method.upper() not in ("GET", "DELETE") else None,
                params=params,
                headers=self._headers(idempotency_key),
            )
        except httpx.TimeoutException as e:
            remote_calls_total.labels(operation=label, outcome="transient").inc()
            raise TransientError(f"Remote timed out: {method} {path}") from e
        except httpx.TransportError as e:
            remote_calls_total.labels(operation=label, outcome="transient").inc()
            raise TransientError(f"Remote unreachable: {e}") from e

        body = self._decode(response)
        if response.is_success:
            remote_calls_total.labels(operation=label, outcome="committed").inc()
            return body

        error: LifelinesError = error_from_payload(response.status_code, body)
        outcome = "transient" if isinstance(error, TransientError) else "rejected"
        remote_calls_total.labels(operation=label, outcome=outcome).inc()
        logger.debug(
            "Remote call failed",
            method=method,
            path=path,
            status=response.status_code,
            kind=error.kind,
        )
        raise error

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return {"message": response.text[:300]}

    def health(self) -> dict[str, Any]:
        """Connectivity probe"""
        return self.request("GET", "/health", operation="health")
