from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional, TextIO

from .codec import parse, serialize
from .config import Config
from .errors import StripRequestError
from .http_client import Transport
from .minimizer import RequestMinimizer
from .reporting import ConsoleReporter, ReportEntry, ReportWriter

logger = logging.getLogger(__name__)


class MinimizationOrchestrator:
    def __init__(self, config: Config, transport: Optional[Transport] = None, stream: Optional[TextIO] = None):
        self.config = config
        self.minimizer = RequestMinimizer(config, transport=transport)
        self.reporter = ConsoleReporter(stream or sys.stdout)

    def load_request(self) -> str:
        if not self.config.request_file:
            raise StripRequestError("需要指定要发送的请求文件")
        path = Path(self.config.request_file)
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StripRequestError(f"无法读取请求文件 {path}: {exc}") from exc
        if not raw.strip():
            raise StripRequestError(f"请求文件 {path} 为空")
        return raw

    def run(self) -> int:
        raw = self.load_request()
        target = self.config.target
        baseline = self.minimizer.probe_baseline(target.host, target.port, target.tls, raw)
        if not baseline.ok():
            self.reporter.error(baseline.error or "未知错误")
            self._write_report(ReportEntry(target.host, target.port, target.tls, raw, None, baseline, None, False))
            return 1
        self.reporter.original(raw, baseline)

        result = self.minimizer.strip(parse(raw), baseline.fingerprint, target.host, target.port, target.tls)
        stripped = serialize(result.request)
        final = self.minimizer.send(target.host, target.port, target.tls, stripped)
        matched = self.minimizer.comparator.equivalent(baseline, final)
        if not matched:
            logger.warning("精简后的请求与基线响应不一致，被移除的元素之间可能存在依赖")
        self.reporter.stripped(stripped, final, result)
        self._write_report(
            ReportEntry(target.host, target.port, target.tls, raw, stripped, baseline, final, matched, result)
        )
        return 0

    def _write_report(self, entry: ReportEntry) -> None:
        if not self.config.report_path:
            return
        ReportWriter(self.config.report_path).write(entry)
        logger.info("报告已写入 %s", self.config.report_path)
