from __future__ import annotations

import json
import pprint
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, TextIO

from .models import MinimizationResult, ProbeResult

RULE = "-----------------"


@dataclass
class ReportEntry:
    host: str
    port: int
    tls: bool
    original_request: str
    stripped_request: Optional[str]
    baseline: ProbeResult
    final: Optional[ProbeResult]
    matched: bool
    result: Optional[MinimizationResult] = None


def probe_to_dict(probe: Optional[ProbeResult]) -> Optional[Dict[str, Any]]:
    if probe is None:
        return None
    if not probe.ok():
        return {"error": probe.error, "elapsed": round(probe.elapsed, 3)}
    fp = probe.fingerprint
    return {
        "status_code": fp.status_code,
        "status_message": fp.status_message,
        "content_length": fp.content_length,
        "headers": dict(fp.headers),
        "elapsed": round(probe.elapsed, 3),
    }


class ConsoleReporter:
    def __init__(self, stream: TextIO):
        self.stream = stream

    def section(self, title: str, body: str) -> None:
        self.stream.write(f"{title}\n{RULE}\n{body}")
        if not body.endswith("\n"):
            self.stream.write("\n")
        self.stream.write(f"{RULE}\n")

    def probe(self, title: str, probe: ProbeResult) -> None:
        self.section(title, pprint.pformat(probe_to_dict(probe), sort_dicts=False))

    def original(self, raw_request: str, baseline: ProbeResult) -> None:
        self.section("原始请求:", raw_request)
        self.probe("基线响应:", baseline)
        self.stream.write("\n")

    def stripped(self, raw_request: str, final: ProbeResult, result: MinimizationResult) -> None:
        self.section("精简后的请求:", raw_request)
        self.probe("精简后的响应:", final)
        removed = [str(removal) for removal in result.removed]
        self.stream.write(f"已移除 {len(removed)}/{result.candidates} 个元素: {', '.join(removed) or '无'}\n")

    def error(self, message: str) -> None:
        self.stream.write(f"错误: {message}\n")


class ReportWriter:
    def __init__(self, path: str):
        self.path = Path(path)

    def write(self, entry: ReportEntry) -> None:
        if self.path.parent and not self.path.parent.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._to_dict(entry), indent=2, ensure_ascii=False), encoding="utf-8")

    def _to_dict(self, entry: ReportEntry) -> Dict[str, Any]:
        removed: Dict[str, List[str]] = entry.result.removed_by_location() if entry.result else {}
        return {
            "target": {"host": entry.host, "port": entry.port, "tls": entry.tls},
            "original_request": entry.original_request,
            "stripped_request": entry.stripped_request,
            "baseline": probe_to_dict(entry.baseline),
            "final": probe_to_dict(entry.final),
            "matched_baseline": entry.matched,
            "candidates": entry.result.candidates if entry.result else 0,
            "removed": removed,
            "failed_probes": [
                {"removed": str(probe.removed), "error": probe.error} for probe in (entry.result.failed if entry.result else [])
            ],
        }
