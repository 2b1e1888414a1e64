from __future__ import annotations

import threading
from typing import Callable, List, Union

import pytest

from strip_request.codec import parse
from strip_request.models import Request

GET_REQUEST = (
    "GET / HTTP/1.1\n"
    "Host: example.com\n"
    "User-Agent: X\n"
    "Accept-Encoding: gzip, deflate\n"
    "\n"
)


def http_response(status: int = 200, message: str = "OK", length: int = 1256, extra: str = "") -> bytes:
    return f"HTTP/1.1 {status} {message}\r\nContent-Length: {length}\r\n{extra}\r\n".encode("ascii")


class FakeTransport:
    def __init__(self, responder: Callable[[Request], Union[bytes, Exception]]):
        self.responder = responder
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def send(self, host: str, port: int, tls: bool, payload: bytes) -> bytes:
        raw = payload.decode("utf-8")
        with self._lock:
            self.calls.append(raw)
        result = self.responder(parse(raw))
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def get_request() -> Request:
    return parse(GET_REQUEST)
