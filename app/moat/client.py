"""
Moat API client: POST {base}/fetch for a captcha, POST {base}/check with the
answer to get bridges.

No check is made that the server speaks the version we asked for, or that
obfs4 is among the transports it offers. obfs4 is the most widely deployed
transport and the server answers in the requested version.

API description:
https://gitlab.torproject.org/tpo/anti-censorship/bridgedb#accessing-the-moat-interface
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional, TypeVar

from app.moat.envelope import (
    CHECK_ENDPOINT,
    FETCH_ENDPOINT,
    build_check_payload,
    build_fetch_payload,
    extract_error_detail,
    parse_bridges,
    parse_challenge,
)
from app.moat.errors import ParseError, ProtocolError, TransportError
from app.moat.models import BridgeSet, Challenge
from app.moat.transport import ProxyTransport
from app.observability.logging import log
from app.settings import settings

T = TypeVar("T")


class MoatClient:
    def __init__(self, transport: ProxyTransport, base_url: Optional[str] = None):
        self._transport = transport
        self.base_url = (base_url or settings.MOAT_BASE_URL).rstrip("/")

    def fetch_captcha(self) -> Challenge:
        challenge = self._call(FETCH_ENDPOINT, build_fetch_payload, parse_challenge)
        log(event="moat_captcha_fetched", imageBytes=len(challenge.image))
        return challenge

    def submit_solution(self, challenge_token: str, solution: str) -> BridgeSet:
        bridges = self._call(
            CHECK_ENDPOINT,
            lambda: build_check_payload(challenge_token, solution),
            parse_bridges,
        )
        log(event="moat_bridges_received", count=len(bridges), bridges=list(bridges.lines))
        return bridges

    def _call(self, endpoint: str, build: Callable[[], Dict[str, Any]],
              parse: Callable[[Any], T]) -> T:
        """
        Every failure leaves here as ProtocolError. A server error envelope
        ({"errors": [{"detail": ...}]}) wins over our own error text, whether it
        came with a 2xx or not.
        """
        url = f"{self.base_url}/{endpoint}"
        body: Any = None
        try:
            payload = build()
            log(event="moat_request", endpoint=endpoint, url=url, body=payload["data"][0])
            body = self._transport.send("POST", url, payload)
            return parse(body)
        except TransportError as e:
            err = ProtocolError(str(e), extract_error_detail(e.body))
            cause: Exception = e
        except ParseError as e:
            err = ProtocolError(str(e), extract_error_detail(body))
            cause = e

        log(
            event="moat_request_failed",
            endpoint=endpoint,
            errorType=type(cause).__name__,
            error=err.summary[:500],
            detail=err.detail,
        )
        raise err from cause

    def close(self) -> None:
        self._transport.close()
