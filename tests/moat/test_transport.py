import json

import httpx
import pytest
from unittest.mock import patch, MagicMock

from app.moat.errors import ParseError, TransportError
from app.moat.models import ProxyEndpoint
from app.moat.transport import ProxyTransport

ENDPOINT = ProxyEndpoint("127.0.0.1", 9050)
URL = "https://bridges.torproject.org/moat/fetch"


def _transport(handler) -> ProxyTransport:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return ProxyTransport(ENDPOINT, client=client)


@patch("app.moat.transport.httpx.Client")
def test_client_is_routed_through_socks(mock_client_cls):
    ProxyTransport(ProxyEndpoint("127.0.0.1", 9150), timeout=7)
    mock_client_cls.assert_called_once_with(proxy="socks5://127.0.0.1:9150", timeout=7.0, trust_env=False)


def test_requires_endpoint():
    with pytest.raises(TransportError):
        ProxyTransport(None)


def test_send_posts_json_with_api_content_type():
    seen = {}

    def handler(request: httpx.Request):
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["ctype"] = request.headers["content-type"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": [{"challenge": "abc"}]})

    t = _transport(handler)
    out = t.send("POST", URL, {"data": [{"version": "0.1.0"}]})

    assert out == {"data": [{"challenge": "abc"}]}
    assert seen["method"] == "POST"
    assert seen["url"] == URL
    assert seen["ctype"] == "application/vnd.api+json"
    assert seen["body"] == {"data": [{"version": "0.1.0"}]}


def test_connection_error_becomes_transport_error():
    def handler(request):
        raise httpx.ConnectError("Connection refused")

    t = _transport(handler)
    with pytest.raises(TransportError) as ei:
        t.send("POST", URL, {})
    assert str(ei.value) == "Connection refused"
    assert isinstance(ei.value.__cause__, httpx.ConnectError)
    assert ei.value.body is None


def test_timeout_becomes_transport_error():
    def handler(request):
        raise httpx.ReadTimeout("timed out")

    with pytest.raises(TransportError, match="timed out"):
        _transport(handler).send("POST", URL, {})


def test_non_2xx_keeps_error_body():
    def handler(request):
        return httpx.Response(400, json={"errors": [{"detail": "wrong solution"}]})

    with pytest.raises(TransportError) as ei:
        _transport(handler).send("POST", URL, {})
    assert ei.value.status_code == 400
    assert ei.value.body == {"errors": [{"detail": "wrong solution"}]}
    assert str(ei.value) == "HTTP 400 Bad Request"


def test_non_2xx_without_json_body():
    def handler(request):
        return httpx.Response(502, text="<html>bad gateway</html>")

    with pytest.raises(TransportError) as ei:
        _transport(handler).send("POST", URL, {})
    assert ei.value.status_code == 502
    assert ei.value.body is None


def test_2xx_non_json_is_parse_error():
    def handler(request):
        return httpx.Response(200, text="not json")

    with pytest.raises(ParseError):
        _transport(handler).send("POST", URL, {})


def test_close_closes_client():
    client = MagicMock()
    with ProxyTransport(ENDPOINT, client=client):
        pass
    client.close.assert_called_once()
