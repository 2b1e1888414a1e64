from __future__ import annotations

import json
from typing import Dict, List, Tuple, Union

from .errors import ProtocolMismatchError
from .models import BodyType, Request, ResponseFingerprint

COOKIE_HEADER = "Cookie"
CONTENT_LENGTH_HEADER = "Content-Length"


def split_lines(raw: str) -> List[str]:
    return [line.strip() for line in raw.split("\n")]


def split_spaces(line: str) -> List[str]:
    return [token.strip() for token in line.split(" ")]


def fold_pair(segment: str, delimiter: str, strip: bool = False) -> Tuple[str, str]:
    """只把第一个分隔符当作键值分隔，其余部分直接拼接（分隔符本身会丢失）。"""
    parts = segment.split(delimiter)
    key, value = parts[0], "".join(parts[1:])
    if strip:
        return key.strip(), value.strip()
    return key, value


def split_pairs(raw: str, separator: str, delimiter: str = "=") -> Dict[str, str]:
    pairs: Dict[str, str] = {}
    for segment in raw.split(separator):
        segment = segment.strip()
        if not segment:
            continue
        key, value = fold_pair(segment, delimiter)
        pairs[key] = value
    return pairs


def parse_header_lines(lines: List[str]) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for line in lines:
        if not line:
            break
        name, value = fold_pair(line, ":", strip=True)
        headers[name] = value
    return headers


def _parse_body(raw: str) -> Tuple[BodyType, object]:
    segments = [segment.strip() for segment in raw.split("\n\n")]
    non_empty = [segment for segment in segments if segment]
    if len(non_empty) <= 1:
        return BodyType.EMPTY, None
    body = non_empty[-1]
    try:
        return BodyType.JSON, json.loads(body)
    except ValueError:
        pass
    form = split_pairs(body, "&")
    if not form:
        return BodyType.EMPTY, None
    return BodyType.FORM, form


def parse(raw_request: str) -> Request:
    raw = raw_request.replace("\r\n", "\n")
    lines = split_lines(raw)
    tokens = split_spaces(lines[0])
    method = tokens[0].upper()
    target = tokens[1] if len(tokens) > 1 else ""
    version = tokens[2] if len(tokens) > 2 else ""
    path, _, query = target.partition("?")

    headers = parse_header_lines(lines[1:])
    cookie_header = headers.pop(COOKIE_HEADER, None)
    # 请求体长度由 serialize 重新计算
    headers.pop(CONTENT_LENGTH_HEADER, None)
    cookies = split_pairs(cookie_header, ";") if cookie_header else {}
    body_type, parsed_body = _parse_body(raw)
    return Request(
        method=method,
        path=path,
        version=version,
        query_params=split_pairs(query, "&"),
        headers=headers,
        cookies=cookies,
        body_type=body_type,
        parsed_body=parsed_body,
    )


def _join_pairs(pairs: Dict[str, str], separator: str) -> str:
    return separator.join(f"{key}={value}" for key, value in pairs.items())


def encode_body(request: Request) -> str:
    body_type = request.body_type
    if body_type is BodyType.EMPTY:
        return ""
    if body_type is BodyType.JSON:
        return json.dumps(request.parsed_body)
    if body_type is BodyType.FORM:
        return _join_pairs(request.parsed_body or {}, "&")
    raise ValueError(f"不支持的请求体类型: {body_type!r}")


def request_target(request: Request) -> str:
    if request.query_params:
        return f"{request.path}?{_join_pairs(request.query_params, '&')}"
    return request.path


def serialize(request: Request) -> str:
    lines = [" ".join([request.method.upper(), request_target(request), request.version])]
    lines.extend(f"{name}: {value}" for name, value in request.headers.items())
    body = encode_body(request)
    if body:
        lines.append(f"{CONTENT_LENGTH_HEADER}: {len(body.encode('utf-8'))}")
    if request.cookies:
        lines.append(f"{COOKIE_HEADER}: {_join_pairs(request.cookies, '; ')}")
    head = "\n".join(lines)
    if not body:
        return head + "\n\n"
    return f"{head}\n\n{body}\n\n"


def parse_response(header_block: Union[bytes, str]) -> ResponseFingerprint:
    if isinstance(header_block, bytes):
        header_block = header_block.decode("iso-8859-1")
    lines = split_lines(header_block.replace("\r\n", "\n"))
    tokens = split_spaces(lines[0])
    try:
        status_code = int(tokens[1])
    except (IndexError, ValueError):
        raise ProtocolMismatchError(
            "没有收到合法的状态码，可能选错了协议（HTTP/TLS）：" + lines[0][:80]
        ) from None
    headers = parse_header_lines(lines[1:])
    try:
        content_length = int(headers.get(CONTENT_LENGTH_HEADER, ""))
    except ValueError:
        content_length = 0
    return ResponseFingerprint(
        status_code=status_code,
        status_message=" ".join(tokens[2:]),
        content_length=content_length,
        headers=headers,
    )
