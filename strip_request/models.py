from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, MutableMapping, Optional


class BodyType(str, Enum):
    EMPTY = "empty"
    JSON = "json"
    FORM = "form"


class Location(str, Enum):
    """请求中可被移除元素所在的位置。"""

    QUERY_PARAMS = "query_params"
    PARSED_BODY = "parsed_body"
    HEADERS = "headers"
    COOKIES = "cookies"


@dataclass(frozen=True)
class RemovalDescriptor:
    key: str
    location: Location

    def __str__(self) -> str:
        return f"{self.location.value}:{self.key}"


@dataclass
class Request:
    """从原始请求文本解析得到的结构化请求。"""

    method: str
    path: str
    version: str
    query_params: Dict[str, str] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: Dict[str, str] = field(default_factory=dict)
    body_type: BodyType = BodyType.EMPTY
    parsed_body: Any = None

    def copy(self) -> Request:
        return deepcopy(self)

    def elements(self, location: Location) -> Dict[str, str]:
        """返回某个位置上的可移除元素；非表单请求体没有可移除元素。"""
        if location is Location.PARSED_BODY:
            if self.body_type is BodyType.FORM and isinstance(self.parsed_body, dict):
                return self.parsed_body
            return {}
        return getattr(self, location.value)

    def without(self, removal: RemovalDescriptor) -> Request:
        variant = self.copy()
        variant.elements(removal.location).pop(removal.key, None)
        return variant

    def count_elements(self) -> Dict[str, int]:
        return {location.value: len(self.elements(location)) for location in Location}


@dataclass(frozen=True)
class ResponseFingerprint:
    status_code: Optional[int]
    status_message: str
    content_length: int
    headers: MutableMapping[str, str] = field(default_factory=dict, compare=False, hash=False)


@dataclass
class ProbeResult:
    fingerprint: Optional[ResponseFingerprint]
    error: Optional[str]
    elapsed: float
    removed: Optional[RemovalDescriptor] = None

    def ok(self) -> bool:
        return self.error is None and self.fingerprint is not None


@dataclass
class MinimizationResult:
    request: Request
    removed: List[RemovalDescriptor]
    kept: List[RemovalDescriptor]
    failed: List[ProbeResult]
    candidates: int

    def removed_by_location(self) -> Dict[str, List[str]]:
        grouped: Dict[str, List[str]] = {location.value: [] for location in Location}
        for removal in self.removed:
            grouped[removal.location.value].append(removal.key)
        return grouped
