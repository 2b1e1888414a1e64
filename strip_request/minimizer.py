from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

from .codec import parse_response, serialize
from .comparator import ResponseComparator
from .config import ClientConfig, Config
from .errors import TransportError
from .http_client import Transport, create_transport
from .models import (
    Location,
    MinimizationResult,
    ProbeResult,
    RemovalDescriptor,
    Request,
    ResponseFingerprint,
)

logger = logging.getLogger(__name__)

Variant = Tuple[RemovalDescriptor, Request]

DEFAULT_ORDER: Tuple[Location, ...] = (
    Location.QUERY_PARAMS,
    Location.PARSED_BODY,
    Location.HEADERS,
    Location.COOKIES,
)


def enumerate_variants(
    request: Request,
    locations: Optional[Sequence[Location]] = None,
    protected: Optional[Mapping[Location, Iterable[str]]] = None,
) -> List[Variant]:
    """每个变体只比基础请求少一个元素；JSON 与空请求体不产生候选。"""
    variants: List[Variant] = []
    for location in locations or DEFAULT_ORDER:
        skip = set((protected or {}).get(location, ()))
        for key in request.elements(location):
            if key in skip:
                continue
            removal = RemovalDescriptor(key=key, location=location)
            variants.append((removal, request.without(removal)))
    return variants


def reduce_request(
    base: Request,
    baseline: ResponseFingerprint,
    results: Iterable[ProbeResult],
    comparator: Optional[ResponseComparator] = None,
) -> Request:
    comparator = comparator or ResponseComparator()
    minimized = base.copy()
    for result in results:
        if result.removed is None or not comparator.equivalent(baseline, result):
            continue
        minimized.elements(result.removed.location).pop(result.removed.key, None)
    return minimized


class RequestMinimizer:
    def __init__(
        self,
        config: Config,
        transport: Optional[Transport] = None,
        comparator: Optional[ResponseComparator] = None,
    ):
        self.config = config
        self.transport = transport or create_transport(config.client)
        self.comparator = comparator or ResponseComparator()

    def send(
        self,
        host: str,
        port: int,
        tls: bool,
        raw_request: str,
        removed: Optional[RemovalDescriptor] = None,
    ) -> ProbeResult:
        start = time.monotonic()
        try:
            block = self.transport.send(host, port, tls, raw_request.encode(self.config.client.encoding))
            fingerprint = parse_response(block)
        except (TransportError, UnicodeError) as exc:
            return ProbeResult(fingerprint=None, error=str(exc), elapsed=time.monotonic() - start, removed=removed)
        return ProbeResult(fingerprint=fingerprint, error=None, elapsed=time.monotonic() - start, removed=removed)

    def probe_baseline(self, host: str, port: int, tls: bool, raw_request: str) -> ProbeResult:
        baseline = self.send(host, port, tls, raw_request)
        if baseline.ok():
            fp = baseline.fingerprint
            logger.info("基线响应: %s %s (Content-Length %s)", fp.status_code, fp.status_message, fp.content_length)
        else:
            logger.warning("基线请求失败: %s", baseline.error)
        return baseline

    def variants_for(self, request: Request) -> List[Variant]:
        cfg = self.config.minimization
        protected = {location: cfg.protected_keys(location) for location in Location}
        return enumerate_variants(request, cfg.location_order(), protected)

    def probe_all(self, host: str, port: int, tls: bool, variants: Sequence[Variant]) -> List[ProbeResult]:
        if not variants:
            return []
        workers = self.config.minimization.max_workers or len(variants)
        with ThreadPoolExecutor(max_workers=min(workers, len(variants)), thread_name_prefix="probe") as executor:
            futures = [
                executor.submit(self.send, host, port, tls, serialize(variant), removal)
                for removal, variant in variants
            ]
            # 必须等所有探测结束后才能折叠结果
            return [future.result() for future in futures]

    def strip(
        self,
        request: Request,
        baseline: ResponseFingerprint,
        host: str,
        port: int,
        tls: bool,
    ) -> MinimizationResult:
        variants = self.variants_for(request)
        logger.info("共 %d 个候选变体，向 %s:%s 并发探测", len(variants), host, port)
        results = self.probe_all(host, port, tls, variants)
        removed: List[RemovalDescriptor] = []
        kept: List[RemovalDescriptor] = []
        failed: List[ProbeResult] = []
        for result in results:
            if not result.ok():
                logger.info("移除 %s 的探测失败: %s", result.removed, result.error)
                failed.append(result)
                kept.append(result.removed)
            elif self.comparator.equivalent(baseline, result):
                logger.debug("移除 %s 后响应与基线一致", result.removed)
                removed.append(result.removed)
            else:
                logger.debug("移除 %s 后响应发生变化，保留", result.removed)
                kept.append(result.removed)
        minimized = reduce_request(request, baseline, results, self.comparator)
        logger.info("可移除 %d 个元素，保留 %d 个（其中 %d 个探测失败）", len(removed), len(kept), len(failed))
        return MinimizationResult(
            request=minimized,
            removed=removed,
            kept=kept,
            failed=failed,
            candidates=len(variants),
        )

    def minimize(
        self,
        request: Request,
        baseline: ResponseFingerprint,
        host: str,
        port: int,
        tls: bool,
    ) -> Request:
        return self.strip(request, baseline, host, port, tls).request


def _default_minimizer(transport: Optional[Transport], client: Optional[ClientConfig]) -> RequestMinimizer:
    config = Config()
    if client is not None:
        config.client = client
    return RequestMinimizer(config, transport=transport)


def probe_baseline(
    host: str,
    port: int,
    tls: bool,
    raw_request: str,
    transport: Optional[Transport] = None,
    client: Optional[ClientConfig] = None,
) -> ProbeResult:
    return _default_minimizer(transport, client).probe_baseline(host, port, tls, raw_request)


def minimize(
    request: Request,
    baseline: ResponseFingerprint,
    host: str,
    port: int,
    tls: bool,
    transport: Optional[Transport] = None,
    client: Optional[ClientConfig] = None,
) -> Request:
    return _default_minimizer(transport, client).minimize(request, baseline, host, port, tls)
