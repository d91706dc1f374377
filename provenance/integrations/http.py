"""provenance.integrations.http

Anchor sink backed by a remote attestation/notary service over HTTP.

Wire contract (JSON):
    POST {base}/commit            body: digest set      -> {"reference": "..."}
    GET  {base}/receipts/{ref}                          -> {"status": "confirmed" | "pending" | "unknown"}

Transport failures and 5xx become SinkUnavailableError so the publisher can
retry them. A 4xx on commit is also unavailable: the digest set was not
accepted, and the ledger state must not move.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from provenance.core.exceptions import ConfigError, SinkUnavailableError
from provenance.core.models import ReceiptStatus
from provenance.integrations.base import DigestSet

logger = logging.getLogger(__name__)

_STATUSES: frozenset[str] = frozenset({"confirmed", "pending", "unknown"})


class HttpAttestationSink:
    name = "http"

    def __init__(
        self,
        base_url: str,
        *,
        token: str = "",
        timeout_s: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not str(base_url).strip():
            raise ConfigError("anchor.http_url is required for the http sink")
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._http = httpx.Client(
            base_url=str(base_url).rstrip("/"),
            headers=headers,
            timeout=float(timeout_s),
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            r = self._http.request(method, path, **kwargs)
            r.raise_for_status()
            out = r.json()
        except httpx.HTTPStatusError as e:
            raise SinkUnavailableError(
                f"attestation service returned {e.response.status_code}",
                sink=self.name,
                status_code=e.response.status_code,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise SinkUnavailableError(f"attestation service unreachable: {e}", sink=self.name) from e
        if not isinstance(out, dict):
            raise SinkUnavailableError("attestation service returned a non-object body", sink=self.name)
        return out

    def commit(self, digest_set: DigestSet) -> str:
        out = self._request("POST", "/commit", json=digest_set.to_dict())
        reference = str(out.get("reference") or "").strip()
        if not reference:
            raise SinkUnavailableError("attestation service returned no reference", sink=self.name)
        logger.debug("http_sink_committed", extra={"anchor_id": digest_set.anchor_id, "reference": reference})
        return reference

    def fetch_receipt(self, external_reference: str) -> ReceiptStatus:
        try:
            out = self._request("GET", f"/receipts/{external_reference}")
        except SinkUnavailableError as e:
            if e.extra.get("status_code") == 404:
                return "unknown"
            raise
        status = str(out.get("status") or "unknown")
        return status if status in _STATUSES else "unknown"  # type: ignore[return-value]
