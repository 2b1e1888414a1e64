from __future__ import annotations

import argparse
import logging
import sys
from typing import Any, Dict, Optional

from .config import TRANSPORTS, load_config
from .errors import StripRequestError
from .orchestrator import MinimizationOrchestrator

VERBOSITY_LEVELS = {1: "INFO", 2: "DEBUG"}


def _port(value: str) -> int:
    try:
        port = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"不是合法的端口号: {value}") from None
    if not 0 < port < 0x10000:
        raise argparse.ArgumentTypeError("端口号必须在 1 到 65535 之间")
    return port


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="strip-request",
        description="去掉请求中不必要的请求头、查询参数、Cookie 和表单字段",
    )
    parser.add_argument("-u", "--http", action="store_true", default=None, help="使用明文 HTTP 发送（默认 TLS）")
    parser.add_argument("-t", "--host", help="目标主机")
    parser.add_argument("-p", "--port", type=_port, help="目标端口")
    parser.add_argument("-r", "--req", dest="request_file", help="包含原始 HTTP 请求的文件")
    parser.add_argument("-v", dest="verbosity", action="count", default=0, help="输出更详细的日志，可重复")
    parser.add_argument("--config", help="配置文件路径")
    parser.add_argument("--transport", choices=TRANSPORTS, help="覆盖配置中的传输方式")
    parser.add_argument("--report", dest="report_path", help="JSON 报告输出路径")
    parser.add_argument("--log-level", help="日志级别")
    return parser


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if args.host:
        overrides["target.host"] = args.host
    if args.port is not None:
        overrides["target.port"] = args.port
    if args.http:
        overrides["target.tls"] = False
    if args.request_file:
        overrides["request_file"] = args.request_file
    if args.transport:
        overrides["client.transport"] = args.transport
    if args.report_path:
        overrides["report_path"] = args.report_path
    if args.log_level:
        overrides["log_level"] = args.log_level
    elif args.verbosity:
        overrides["log_level"] = VERBOSITY_LEVELS[min(args.verbosity, 2)]
    return overrides


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = load_config(args.config, overrides=_overrides(args))
    except StripRequestError as exc:
        print(f"配置错误: {exc}", file=sys.stderr)
        return 2
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    try:
        return MinimizationOrchestrator(config).run()
    except StripRequestError as exc:
        print(f"错误: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
