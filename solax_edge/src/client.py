"""
Async HTTPS client for the Solax Cloud real-time API.

Fetches ``getRealtimeInfo.do?tokenId=...&sn=...`` for one inverter and
returns a :class:`~solax_edge.src.models.Snapshot`.  Designed to be robust:

- Transport errors, non-2xx responses, undecodable bodies and schema
  violations all become a failed Snapshot carrying the error message.
- A well-formed ``success: false`` response also becomes a failed Snapshot.
- Never propagates exceptions to the caller.

Operations:
- parse_response(response): Turn one HTTP response into a Snapshot.
- SolaxCloudClient.fetch(sn): Fetch through a shared, reusable client.

CHANGELOG:
- 2026-10-19: Add Q.Cells portal endpoint (STORY-009)
- 2026-10-19: Initial creation (STORY-005)

TODO:
- None
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

import httpx
from pydantic import ValidationError

from solax_edge.src.models import Snapshot, SolaxResponse

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CLOUD_URLS: dict[str, str] = {
    "solax": "https://www.solaxcloud.com:9443/proxy/api/getRealtimeInfo.do",
    "qcells": "https://www.portal-q-cells.us/proxyApp/proxy/api/getRealtimeInfo.do",
}
"""Real-time API endpoint per inverter brand."""

REQUEST_TIMEOUT_S: float = 10.0
"""Default timeout per HTTP request in seconds."""


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


# ---------------------------------------------------------------------------
# Response handling
# ---------------------------------------------------------------------------


def parse_response(
    response: httpx.Response,
    *,
    source_id: str,
    fetched_at: datetime,
) -> Snapshot:
    """Turn an HTTP response into a Snapshot.

    Args:
        response: The HTTP response of the real-time endpoint.
        source_id: Identifier of the polled source.
        fetched_at: Timestamp to embed in the snapshot.

    Returns:
        A successful Snapshot with inverter data, or a failed Snapshot
        describing why the response was unusable.
    """
    if not response.is_success:
        return Snapshot.failed(
            source_id,
            f"unexpected response HTTP {response.status_code} {response.reason_phrase}",
            fetched_at,
        )

    try:
        body = SolaxResponse.model_validate_json(response.content)
    except ValidationError as exc:
        return Snapshot.failed(
            source_id,
            f"malformed response body ({exc.error_count()} validation errors)",
            fetched_at,
        )

    if not body.success or body.result is None:
        return Snapshot.failed(source_id, body.exception or "query failed", fetched_at)

    return Snapshot(
        source_id=source_id,
        success=True,
        exception=body.exception,
        fetched_at=fetched_at,
        data=body.result,
    )


# ---------------------------------------------------------------------------
# Reusable client
# ---------------------------------------------------------------------------


class SolaxCloudClient:
    """Client for the Solax Cloud real-time endpoint.

    Holds the API token and one ``httpx.AsyncClient`` shared by every poll
    loop.  TLS certificate verification is always enabled.

    Args:
        url: Real-time API endpoint.  Must use HTTPS.
        token_id: Solax Cloud API token.
        timeout_s: Request timeout in seconds.
        http: Existing ``httpx.AsyncClient`` to use instead of creating one.
        clock: Returns the current time; injectable for tests.

    Raises:
        ValueError: If *url* does not start with ``https://``.

    Usage::

        async with SolaxCloudClient(url=CLOUD_URLS["solax"], token_id="...") as client:
            snapshot = await client.fetch("SWABCDEFGH")
    """

    def __init__(
        self,
        *,
        url: str,
        token_id: str,
        timeout_s: float = REQUEST_TIMEOUT_S,
        http: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not url.lower().startswith("https://"):
            raise ValueError(f"Solax Cloud URL must use HTTPS (got: '{url}').")
        self._url = url
        self._token_id = token_id
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(verify=True, timeout=timeout_s)
        self._clock = clock

    @property
    def url(self) -> str:
        return self._url

    async def fetch(self, sn: str, *, source_id: str | None = None) -> Snapshot:
        """Fetch the current snapshot of inverter *sn*.

        Args:
            sn: Registration number of the inverter's communication module.
            source_id: Identifier to embed; defaults to the lower-cased *sn*.

        Returns:
            The resulting Snapshot; never raises.
        """
        sid = source_id or sn.lower()
        try:
            response = await self._http.get(
                self._url,
                params={"tokenId": self._token_id, "sn": sn},
            )
        except httpx.HTTPError as exc:
            logger.warning("Solax Cloud request failed for sn=%s: %r", sn, exc)
            return Snapshot.failed(sid, f"network error: {exc!r}", self._clock())

        snapshot = parse_response(response, source_id=sid, fetched_at=self._clock())
        if not snapshot.success:
            logger.debug("Solax Cloud returned no data for sn=%s", sn)
        return snapshot

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> SolaxCloudClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
