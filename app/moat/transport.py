"""
SOCKS-only HTTP transport for the moat API.

Everything goes through the local tor SOCKS listener. A transport cannot be
built without a ProxyEndpoint, and trust_env is off so HTTP(S)_PROXY and
NO_PROXY in the environment cannot open a direct path.
"""

from __future__ import annotations

import time
from typing import Any, Dict, Optional

import httpx

from app.moat.errors import ParseError, TransportError
from app.moat.models import CONTENT_TYPE, ProxyEndpoint
from app.observability.logging import log
from app.settings import settings


class ProxyTransport:
    def __init__(self, endpoint: ProxyEndpoint, *, timeout: Optional[float] = None,
                 client: Optional[httpx.Client] = None):
        if endpoint is None:
            raise TransportError("no SOCKS endpoint; network is not ready")
        self.endpoint = endpoint
        if client is None:
            client = httpx.Client(
                proxy=endpoint.url,
                timeout=float(timeout if timeout is not None else settings.MOAT_REQUEST_TIMEOUT_SEC),
                trust_env=False,
            )
        self._client = client

    def send(self, method: str, url: str, json_body: Dict[str, Any]) -> Dict[str, Any]:
        """One request/response exchange. Returns the decoded JSON body."""
        start = time.time()
        try:
            resp = self._client.request(
                method,
                url,
                json=json_body,
                headers={"Content-Type": CONTENT_TYPE, "Accept": CONTENT_TYPE},
            )
        except httpx.HTTPError as e:
            log(
                event="moat_transport_exception",
                url=url,
                proxy=self.endpoint.url,
                elapsedMs=int((time.time() - start) * 1000),
                errorType=type(e).__name__,
                error=str(e)[:500],
            )
            raise TransportError(str(e) or type(e).__name__) from e

        elapsed_ms = int((time.time() - start) * 1000)
        body = None
        try:
            body = resp.json()
        except ValueError:
            body = None

        if not (200 <= resp.status_code < 300):
            log(
                event="moat_transport_non2xx",
                url=url,
                statusCode=int(resp.status_code),
                elapsedMs=elapsed_ms,
                responseText=(resp.text or "")[:300],
            )
            raise TransportError(
                f"HTTP {resp.status_code} {resp.reason_phrase}".strip(),
                status_code=resp.status_code,
                body=body,
            )

        log(event="moat_transport_ok", url=url, statusCode=int(resp.status_code), elapsedMs=elapsed_ms)
        if body is None:
            raise ParseError("response body is not JSON")
        return body

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "ProxyTransport":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
