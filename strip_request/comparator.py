from __future__ import annotations

from typing import Optional, Union

from .models import ProbeResult, ResponseFingerprint


def fingerprints_match(base: ResponseFingerprint, candidate: ResponseFingerprint) -> bool:
    # 响应头（时间戳、追踪 ID 等）不参与比较
    return (
        base.content_length == candidate.content_length
        and base.status_code == candidate.status_code
        and base.status_message == candidate.status_message
    )


def _fingerprint_of(item: Union[ProbeResult, ResponseFingerprint, None]) -> Optional[ResponseFingerprint]:
    if isinstance(item, ProbeResult):
        return item.fingerprint if item.ok() else None
    return item


class ResponseComparator:
    """判断变体请求的响应是否与基线等价；任何失败的探测都视为不等价。"""

    def equivalent(
        self,
        baseline: Union[ProbeResult, ResponseFingerprint, None],
        candidate: Union[ProbeResult, ResponseFingerprint, None],
    ) -> bool:
        base = _fingerprint_of(baseline)
        cand = _fingerprint_of(candidate)
        if base is None or cand is None:
            return False
        return fingerprints_match(base, cand)
