"""
Moat Envelope Codec
-------------------
Both directions of the moat API use the JSON-API style wrapper:

    request / success:  {"data":   [{"version": "0.1.0", ...}]}
    error:              {"errors": [{"detail": "...", ...}]}

Only data[0] / errors[0] is ever read. Payloads are built as dicts and
serialised by the HTTP layer, so user-supplied solution text is never spliced
into a JSON string by hand.
"""

from __future__ import annotations

import base64
import binascii
from typing import Any, Dict, List, Optional

from app.moat.errors import ParseError
from app.moat.models import PROTOCOL_VERSION, TRANSPORT, BridgeSet, Challenge

FETCH_ENDPOINT = "fetch"
CHECK_ENDPOINT = "check"

# The id the reference moat client sends with every solution.
SOLUTION_ID = "2"


def build_envelope(fields: Dict[str, Any]) -> Dict[str, Any]:
    if not isinstance(fields, dict):
        raise ParseError("envelope fields must be an object")
    item: Dict[str, Any] = {"version": PROTOCOL_VERSION}
    for k, v in fields.items():
        if not isinstance(k, str) or k == "version":
            raise ParseError(f"invalid envelope field: {k!r}")
        item[k] = v
    return {"data": [item]}


def build_fetch_payload() -> Dict[str, Any]:
    return build_envelope({"type": "client-transports", "supported": [TRANSPORT]})


def build_check_payload(challenge_token: str, solution: str) -> Dict[str, Any]:
    if not isinstance(challenge_token, str):
        raise ParseError("challenge token must be a string")
    if not isinstance(solution, str):
        raise ParseError("solution must be a string")
    return build_envelope({
        "id": SOLUTION_ID,
        "type": "moat-solution",
        "transport": TRANSPORT,
        "challenge": challenge_token,
        "solution": solution,
        "qrcode": "false",
    })


def _first_data(body: Any) -> Dict[str, Any]:
    if not isinstance(body, dict):
        raise ParseError("response is not a JSON object")
    data = body.get("data")
    if not isinstance(data, list) or not data:
        raise ParseError("response has no data")
    first = data[0]
    if not isinstance(first, dict):
        raise ParseError("data[0] is not an object")
    return first


def _require_str(item: Dict[str, Any], key: str) -> str:
    v = item.get(key)
    if not isinstance(v, str):
        raise ParseError(f"data[0].{key} missing or not a string")
    return v


def decode_image(raw: str) -> bytes:
    # tolerate line-wrapped base64, nothing else
    compact = "".join(raw.split())
    try:
        return base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ParseError(f"captcha image is not valid base64: {e}") from e


def parse_challenge(body: Any) -> Challenge:
    item = _first_data(body)
    token = _require_str(item, "challenge")
    image = decode_image(_require_str(item, "image"))
    cid = item.get("id")
    return Challenge(challenge_token=token, image=image, id=cid if isinstance(cid, str) else None)


def parse_bridges(body: Any) -> BridgeSet:
    item = _first_data(body)
    bridges = item.get("bridges")
    if not isinstance(bridges, list):
        raise ParseError("data[0].bridges missing or not a list")
    lines: List[str] = []
    for i, b in enumerate(bridges):
        if not isinstance(b, str):
            raise ParseError(f"data[0].bridges[{i}] is not a string")
        lines.append(b)
    return BridgeSet.from_lines(lines)


def extract_error_detail(body: Any) -> Optional[str]:
    """
    Returns errors[0].detail if body is an error envelope, else None.
    Never raises.
    """
    if not isinstance(body, dict):
        return None
    errors = body.get("errors")
    if not isinstance(errors, list) or not errors:
        return None
    first = errors[0]
    if not isinstance(first, dict):
        return None
    detail = first.get("detail")
    if isinstance(detail, str) and detail.strip():
        return detail
    return None
