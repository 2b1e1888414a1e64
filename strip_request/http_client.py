from __future__ import annotations

import logging
import socket
import ssl
from functools import lru_cache
from typing import Protocol

import requests
import urllib3

from .codec import encode_body, parse, request_target
from .config import ClientConfig
from .errors import ProtocolMismatchError, TransportError

logger = logging.getLogger(__name__)

_HTTP_VERSIONS = {9: "HTTP/0.9", 10: "HTTP/1.0", 11: "HTTP/1.1", 20: "HTTP/2"}

# 探测目标常用自签名证书，进程内只关闭一次告警
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)


class Transport(Protocol):
    def send(self, host: str, port: int, tls: bool, payload: bytes) -> bytes: ...


@lru_cache(maxsize=None)
def trust_anything_context() -> ssl.SSLContext:
    """接受任意服务器证书的 TLS 上下文，进程内只创建一次并被所有连接共享。"""
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


class SocketTransport:
    """每次发送都新建一条连接，原样写入请求字节，读到响应头结束的空行为止。"""

    def __init__(self, config: ClientConfig):
        self.config = config

    def send(self, host: str, port: int, tls: bool, payload: bytes) -> bytes:
        try:
            conn = socket.create_connection((host, port), timeout=self.config.connect_timeout)
        except (OSError, ValueError) as exc:
            raise TransportError(f"连接 {host}:{port} 失败: {exc}", host, port) from exc
        with conn:
            conn.settimeout(self.config.read_timeout)
            try:
                if tls:
                    with trust_anything_context().wrap_socket(conn, server_hostname=host) as tls_conn:
                        return self._exchange(tls_conn, payload, host, port)
                return self._exchange(conn, payload, host, port)
            except socket.timeout as exc:
                raise TransportError(f"读取 {host}:{port} 超时", host, port) from exc
            except ssl.SSLError as exc:
                raise ProtocolMismatchError(f"TLS 握手失败，可能选错了协议: {exc}", host, port) from exc
            except OSError as exc:
                raise ProtocolMismatchError(f"连接被意外关闭，可能选错了协议: {exc}", host, port) from exc
            except ValueError as exc:
                raise TransportError(f"无法与 {host}:{port} 建立会话: {exc}", host, port) from exc

    def _exchange(self, conn: socket.socket, payload: bytes, host: str, port: int) -> bytes:
        conn.sendall(payload)
        limit = self.config.max_header_bytes
        received = []
        total = 0
        with conn.makefile("rb") as reader:
            while True:
                line = reader.readline(limit + 1)
                if not line:
                    break
                total += len(line)
                if total > limit:
                    raise TransportError(f"{host}:{port} 的响应头超过 {limit} 字节", host, port)
                received.append(line)
                if not line.strip():
                    break
        if not received:
            raise ProtocolMismatchError(f"{host}:{port} 未返回任何数据就关闭了连接", host, port)
        return b"".join(received)


class RequestsTransport:
    """通过 requests 发送，可走代理；请求会被重新组装，保真度低于 SocketTransport。"""

    def __init__(self, config: ClientConfig):
        self.config = config

    def send(self, host: str, port: int, tls: bool, payload: bytes) -> bytes:
        try:
            request = parse(payload.decode(self.config.encoding))
        except UnicodeDecodeError as exc:
            raise TransportError(f"无法按 {self.config.encoding} 解码请求: {exc}", host, port) from exc
        scheme = "https" if tls else "http"
        url = f"{scheme}://{host}:{port}{request_target(request)}"
        body = encode_body(request)
        # 每次探测使用独立会话，不复用连接池
        with requests.Session() as session:
            session.headers.clear()
            if self.config.proxies:
                session.proxies.update(self.config.proxies)
            try:
                response = session.request(
                    method=request.method,
                    url=url,
                    headers=request.headers,
                    cookies=request.cookies,
                    data=body.encode(self.config.encoding) if body else None,
                    timeout=(self.config.connect_timeout, self.config.read_timeout),
                    verify=False,
                    allow_redirects=False,
                    stream=True,
                )
            except (requests.RequestException, ValueError) as exc:
                raise TransportError(f"请求 {url} 失败: {exc}", host, port) from exc
            with response:
                return render_header_block(response)


def render_header_block(response: requests.Response) -> bytes:
    version = _HTTP_VERSIONS.get(getattr(response.raw, "version", 11), "HTTP/1.1")
    lines = [f"{version} {response.status_code} {response.reason or ''}".rstrip()]
    lines.extend(f"{name}: {value}" for name, value in response.headers.items())
    return ("\r\n".join(lines) + "\r\n\r\n").encode("iso-8859-1", errors="replace")


def create_transport(config: ClientConfig) -> Transport:
    if config.transport == "requests":
        logger.debug("使用 requests 传输（代理: %s）", config.proxies or "无")
        return RequestsTransport(config)
    return SocketTransport(config)
