import io
import json
import socket

import pytest
import requests
import responses

from permen.transport import (
    ConnectionFailedError,
    DNSResolutionError,
    HTTPStatusError,
    RequestFailedError,
    RequestOptions,
    RequestTimeoutError,
    RestClient,
    TransportError,
    get_error_details,
    is_connection_error,
    is_dns_error,
    is_timeout_error,
)

BASE = "http://api.example.com"


@pytest.fixture
def client():
    return RestClient(BASE, 5)


@pytest.fixture
def mocked():
    with responses.RequestsMock() as rsps:
        yield rsps


def test_get_returns_body_status_and_headers(client, mocked):
    mocked.add(responses.GET, BASE + "/items", body=b'{"ok":true}', status=200,
               headers={"X-Trace": "abc"})
    body, status, headers = client.get("/items")
    assert body == b'{"ok":true}'
    assert status == 200
    assert headers["X-Trace"] == "abc"


def test_post_encodes_json_body(client, mocked):
    mocked.add(responses.POST, BASE + "/items", body=b"{}", status=201)
    body, status, _ = client.post("/items", RequestOptions(body={"name": "widget", "count": 2}))
    sent = mocked.calls[0].request
    assert status == 201
    assert body == b"{}"
    assert sent.headers["Content-Type"] == "application/json"
    assert json.loads(sent.body) == {"name": "widget", "count": 2}


def test_string_body_is_sent_verbatim(client, mocked):
    mocked.add(responses.PUT, BASE + "/raw", body=b"", status=204)
    body, status, _ = client.put("/raw", RequestOptions(body="plain text", content_type="text/plain"))
    sent = mocked.calls[0].request
    assert status == 204
    assert body == b""
    assert sent.body == b"plain text"
    assert sent.headers["Content-Type"] == "text/plain"


def test_query_params_are_merged_and_sorted(client, mocked):
    mocked.add(responses.GET, BASE + "/items", body=b"[]")
    body, status, _ = client.get("/items?x=1", RequestOptions(query_params={"y": "2"}))
    assert body == b"[]"
    assert status == 200
    assert mocked.calls[0].request.url == BASE + "/items?x=1&y=2"


def test_query_param_replaces_existing_value(client, mocked):
    mocked.add(responses.GET, BASE + "/items", body=b"[]")
    body, status, _ = client.get("/items?x=1", RequestOptions(query_params={"x": "9"}))
    assert body == b"[]"
    assert status == 200
    assert mocked.calls[0].request.url == BASE + "/items?x=9"


def test_headers_are_canonicalised_except_esb(client, mocked):
    mocked.add(responses.GET, BASE + "/esb", body=b"done")
    client.headers["x-client-id"] = "svc"
    opts = RequestOptions(headers={"x-esb-key": "k", "x-other": "v"}, is_esb=True)
    body, status, _ = client.get("/esb", opts)
    assert body == b"done"
    assert status == 200
    names = list(mocked.calls[0].request.headers.keys())
    assert "x-esb-key" in names
    assert "X-Other" in names
    assert "X-Client-Id" in names


def test_multipart_files_and_fields(client, mocked):
    mocked.add(responses.POST, BASE + "/upload", body=b"stored", status=201)
    opts = RequestOptions(files={"doc": io.BytesIO(b"file-bytes")}, body={"title": "report"})
    body, status, _ = client.post("/upload", opts)
    assert body == b"stored"
    assert status == 201
    sent = mocked.calls[0].request
    assert sent.headers["Content-Type"].startswith("multipart/form-data")
    assert b'name="doc"; filename="doc"' in sent.body
    assert b"file-bytes" in sent.body
    assert b'name="title"' in sent.body


def test_error_status_raises_with_body(client, mocked):
    mocked.add(responses.DELETE, BASE + "/items/1", body=b"not found", status=404)
    with pytest.raises(HTTPStatusError) as info:
        client.delete("/items/1")
    assert info.value.status_code == 404
    assert info.value.body == b"not found"
    assert str(info.value) == "not found"


def test_timeout_becomes_request_timeout_error(client, mocked):
    mocked.add(responses.GET, BASE + "/slow", body=requests.exceptions.ReadTimeout("read timed out"))
    with pytest.raises(RequestTimeoutError) as info:
        client.get("/slow")
    assert info.value.url == BASE + "/slow"
    assert info.value.timeout == 5
    assert str(info.value).startswith("timeout after 5s calling " + BASE + "/slow")


def test_refused_connection_becomes_connection_error(client, mocked):
    mocked.add(responses.GET, BASE + "/down",
               body=requests.exceptions.ConnectionError("Connection refused"))
    with pytest.raises(ConnectionFailedError) as info:
        client.get("/down")
    assert str(info.value).startswith("connection error to " + BASE + "/down")


def test_resolution_failure_becomes_dns_error(client, mocked):
    mocked.add(responses.GET, BASE + "/x",
               body=requests.exceptions.ConnectionError("no such host"))
    with pytest.raises(DNSResolutionError) as info:
        client.get("/x")
    assert str(info.value).startswith("DNS error for ")


def test_other_failure_becomes_request_failed_error(client, mocked):
    mocked.add(responses.GET, BASE + "/x",
               body=requests.exceptions.ConnectionError("reset by peer"))
    with pytest.raises(RequestFailedError) as info:
        client.get("/x")
    assert isinstance(info.value, TransportError)
    assert str(info.value).startswith("request error to ")


def test_error_predicates_on_plain_exceptions():
    assert is_timeout_error(RuntimeError("context deadline exceeded"))
    assert is_connection_error(RuntimeError("dial tcp: connect: connection refused"))
    assert is_dns_error(RuntimeError("lookup host: no such host"))
    assert is_dns_error(socket.gaierror("boom"))
    assert is_connection_error(ConnectionRefusedError("boom"))
    assert not is_timeout_error(RuntimeError("boom"))
    assert not is_timeout_error(None)
    assert not is_connection_error(None)
    assert not is_dns_error(None)


def test_error_predicates_on_typed_errors():
    assert is_timeout_error(RequestTimeoutError("u", 1.0, None))
    assert is_connection_error(ConnectionFailedError("u", None))
    assert is_dns_error(DNSResolutionError("u", None))


def test_error_details_for_timeout():
    err = RequestTimeoutError("http://svc.example.com", 5, RuntimeError("slow"))
    details = get_error_details(err)
    assert details["type"] == "timeout"
    assert details["url"] == "http://svc.example.com"
    assert details["timeout_duration"] == "5s"
    assert details["is_timeout"] is True
    assert details["error"] == str(err)


def test_error_details_for_other_kinds():
    assert get_error_details(ConnectionFailedError("u", RuntimeError("x")))["type"] == "connection"
    assert get_error_details(DNSResolutionError("u", RuntimeError("x")))["type"] == "dns"
    assert get_error_details(RequestFailedError("u", RuntimeError("x")))["type"] == "request"
    plain = get_error_details(RuntimeError("boom"))
    assert plain["type"] == "unknown"
    assert "url" not in plain
    assert get_error_details(None) is None