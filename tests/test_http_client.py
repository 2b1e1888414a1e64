from __future__ import annotations

import socket
import socketserver
import ssl
import threading
import time
from types import SimpleNamespace

import pytest
import requests

from strip_request.codec import parse_response
from strip_request.config import ClientConfig
from strip_request.errors import ProtocolMismatchError, TransportError
from strip_request.http_client import (
    RequestsTransport,
    SocketTransport,
    create_transport,
    render_header_block,
    trust_anything_context,
)

from .conftest import GET_REQUEST

RESPONSE = b"HTTP/1.1 200 OK\r\nContent-Length: 5\r\nServer: test\r\n\r\nhello"


class _Handler(socketserver.StreamRequestHandler):
    def handle(self):
        mode = self.server.mode
        if mode == "close":
            return
        request = []
        while True:
            line = self.rfile.readline()
            if not line or not line.strip():
                break
            request.append(line)
        self.server.received.append(b"".join(request))
        if mode == "silent":
            time.sleep(1)
            return
        if mode == "huge":
            self.wfile.write(b"HTTP/1.1 200 OK\r\nX-Big: " + b"a" * 4096 + b"\r\n\r\n")
            return
        self.wfile.write(RESPONSE)


@pytest.fixture
def server():
    srv = socketserver.ThreadingTCPServer(("127.0.0.1", 0), _Handler)
    srv.daemon_threads = True
    srv.mode = "ok"
    srv.received = []
    thread = threading.Thread(target=srv.serve_forever, daemon=True)
    thread.start()
    yield srv
    srv.shutdown()
    srv.server_close()


def _send(server, **config):
    transport = SocketTransport(ClientConfig(**config))
    host, port = server.server_address
    return transport.send(host, port, False, GET_REQUEST.encode("utf-8"))


def test_socket_transport_reads_only_the_header_block(server):
    block = _send(server)
    assert block == b"HTTP/1.1 200 OK\r\nContent-Length: 5\r\nServer: test\r\n\r\n"
    assert parse_response(block).content_length == 5
    assert server.received[0].startswith(b"GET / HTTP/1.1\n")


def test_socket_transport_read_timeout(server):
    server.mode = "silent"
    with pytest.raises(TransportError, match="超时"):
        _send(server, read_timeout=0.2)


def test_socket_transport_peer_closes_without_data(server):
    server.mode = "close"
    with pytest.raises(ProtocolMismatchError):
        _send(server)


def test_socket_transport_limits_header_size(server):
    server.mode = "huge"
    with pytest.raises(TransportError, match="1024"):
        _send(server, max_header_bytes=1024)


def test_socket_transport_connection_refused():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    transport = SocketTransport(ClientConfig(connect_timeout=1.0))
    with pytest.raises(TransportError) as excinfo:
        transport.send("127.0.0.1", port, False, b"GET / HTTP/1.1\n\n")
    assert excinfo.value.port == port


def test_trust_anything_context_is_shared():
    context = trust_anything_context()
    assert context is trust_anything_context()
    assert context.verify_mode == ssl.CERT_NONE
    assert context.check_hostname is False


def _fake_response():
    response = SimpleNamespace(
        raw=SimpleNamespace(version=11),
        status_code=403,
        reason="Forbidden",
        headers={"Content-Length": "42", "Server": "edge"},
        closed=False,
    )
    return response


def test_render_header_block_round_trips_through_parse_response():
    fingerprint = parse_response(render_header_block(_fake_response()))
    assert fingerprint.status_code == 403
    assert fingerprint.status_message == "Forbidden"
    assert fingerprint.content_length == 42


class _ClosableResponse:
    def __init__(self):
        self.raw = SimpleNamespace(version=10)
        self.status_code = 200
        self.reason = "OK"
        self.headers = {"Content-Length": "7"}
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True


def test_requests_transport_rebuilds_the_request(monkeypatch):
    captured = {}
    response = _ClosableResponse()

    def fake_request(self, **kwargs):
        captured.update(kwargs)
        captured["session_headers"] = dict(self.headers)
        captured["proxies"] = dict(self.proxies)
        return response

    monkeypatch.setattr(requests.Session, "request", fake_request)
    transport = RequestsTransport(ClientConfig(proxies={"https": "http://127.0.0.1:8080"}))
    raw = b"POST /login?next=/home HTTP/1.1\nHost: example.com\nCookie: sid=1\n\nuser=a&pass=b\n\n"
    block = transport.send("example.com", 8443, True, raw)

    assert block.startswith(b"HTTP/1.0 200 OK\r\n")
    assert response.closed
    assert captured["url"] == "https://example.com:8443/login?next=/home"
    assert captured["method"] == "POST"
    assert captured["headers"] == {"Host": "example.com"}
    assert captured["cookies"] == {"sid": "1"}
    assert captured["data"] == b"user=a&pass=b"
    assert captured["verify"] is False
    assert captured["allow_redirects"] is False
    assert captured["timeout"] == (5.0, 5.0)
    assert captured["session_headers"] == {}
    assert captured["proxies"] == {"https": "http://127.0.0.1:8080"}


def test_requests_transport_wraps_request_errors(monkeypatch):
    def fake_request(self, **kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(requests.Session, "request", fake_request)
    transport = RequestsTransport(ClientConfig())
    with pytest.raises(TransportError, match="refused"):
        transport.send("example.com", 80, False, GET_REQUEST.encode("utf-8"))


def test_create_transport_selects_implementation():
    assert isinstance(create_transport(ClientConfig()), SocketTransport)
    assert isinstance(create_transport(ClientConfig(transport="requests")), RequestsTransport)


@pytest.fixture
def opened_sockets(monkeypatch):
    opened = []
    create_connection = socket.create_connection

    def recording_create_connection(*args, **kwargs):
        conn = create_connection(*args, **kwargs)
        opened.append(conn)
        return conn

    monkeypatch.setattr(socket, "create_connection", recording_create_connection)
    return opened


@pytest.mark.parametrize(
    "mode, error, config",
    [
        ("ok", None, {}),
        ("silent", TransportError, {"read_timeout": 0.2}),
        ("huge", TransportError, {"max_header_bytes": 1024}),
        ("close", ProtocolMismatchError, {}),
    ],
)
def test_socket_transport_closes_connection_on_every_path(server, opened_sockets, mode, error, config):
    server.mode = mode
    if error is None:
        _send(server, **config)
    else:
        with pytest.raises(error):
            _send(server, **config)
    assert len(opened_sockets) == 1
    assert opened_sockets[0].fileno() == -1


def test_socket_transport_rejects_invalid_hostname():
    transport = SocketTransport(ClientConfig(connect_timeout=1.0))
    with pytest.raises(TransportError) as excinfo:
        transport.send("a" * 70 + ".example", 80, False, GET_REQUEST.encode("utf-8"))
    assert excinfo.value.port == 80


def test_requests_transport_wraps_header_encoding_errors(monkeypatch):
    def fake_request(self, **kwargs):
        raise UnicodeEncodeError("latin-1", kwargs["headers"]["X-Name"], 0, 2, "ordinal not in range(256)")

    monkeypatch.setattr(requests.Session, "request", fake_request)
    transport = RequestsTransport(ClientConfig())
    raw = "GET / HTTP/1.1\nHost: 127.0.0.1\nX-Name: 张三\n\n".encode("utf-8")
    with pytest.raises(TransportError, match="latin-1"):
        transport.send("127.0.0.1", 9, False, raw)


def test_requests_transport_rejects_undecodable_payload():
    transport = RequestsTransport(ClientConfig(encoding="ascii"))
    with pytest.raises(TransportError):
        transport.send("127.0.0.1", 9, False, "GET /é HTTP/1.1\n\n".encode("utf-8"))
