from __future__ import annotations


class StripRequestError(Exception):
    pass


class ConfigError(StripRequestError):
    pass


class TransportError(StripRequestError):
    """连接、读取或 TLS 握手失败。"""

    def __init__(self, message: str, host: str = "", port: int = 0):
        super().__init__(message)
        self.host = host
        self.port = port


class ProtocolMismatchError(TransportError):
    """响应没有合法的状态行，通常是 HTTP/TLS 协议选错了。"""
