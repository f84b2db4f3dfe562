import secrets

from fastapi import Header, HTTPException
from app.settings import settings


def require_api_key(x_api_key: str = Header(default="", alias="x-api-key")):
    """
    The control API is meant for loopback clients; the key is optional.
    API_KEY unset: allow. API_KEY set: x-api-key must match it.
    """
    expected = getattr(settings, "API_KEY", "") or ""
    if not expected:
        return
    if not secrets.compare_digest(x_api_key.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Invalid API key")
