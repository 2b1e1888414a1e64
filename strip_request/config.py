from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .errors import ConfigError
from .models import Location

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "strip_request.yaml"
TRANSPORTS = ("socket", "requests")


@dataclass
class TargetConfig:
    host: str = "127.0.0.1"
    port: int = 443
    tls: bool = True


@dataclass
class ClientConfig:
    transport: str = "socket"
    connect_timeout: float = 5.0
    read_timeout: float = 5.0
    max_header_bytes: int = 64 * 1024
    encoding: str = "utf-8"
    proxies: Dict[str, str] = field(default_factory=dict)


@dataclass
class MinimizationConfig:
    locations: List[str] = field(default_factory=lambda: [location.value for location in Location])
    protected: Dict[str, List[str]] = field(default_factory=dict)
    max_workers: Optional[int] = None

    def location_order(self) -> List[Location]:
        return [Location(name) for name in self.locations]

    def protected_keys(self, location: Location) -> List[str]:
        return list(self.protected.get(location.value, []))


@dataclass
class Config:
    target: TargetConfig = field(default_factory=TargetConfig)
    client: ClientConfig = field(default_factory=ClientConfig)
    minimization: MinimizationConfig = field(default_factory=MinimizationConfig)
    request_file: Optional[str] = None
    report_path: Optional[str] = None
    log_level: str = "WARNING"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _build_section(cls, data: Any, section: str):
    if data is None:
        return cls()
    if not isinstance(data, Mapping):
        raise ConfigError(f"配置段 {section} 必须是映射")
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"配置段 {section} 含有未知字段: {', '.join(sorted(unknown))}")
    return cls(**data)


def config_from_dict(data: Mapping[str, Any]) -> Config:
    if not isinstance(data, Mapping):
        raise ConfigError("配置文件顶层必须是映射")
    sections = {"target": TargetConfig, "client": ClientConfig, "minimization": MinimizationConfig}
    config = Config()
    for key, value in data.items():
        if key in sections:
            setattr(config, key, _build_section(sections[key], value, key))
        elif key in {f.name for f in fields(Config)}:
            setattr(config, key, value)
        else:
            raise ConfigError(f"未知的配置项: {key}")
    return config


def _apply_override(config: Config, dotted_key: str, value: Any) -> None:
    target: Any = config
    parts = dotted_key.split(".")
    for part in parts[:-1]:
        target = getattr(target, part, None)
        if not is_dataclass(target):
            raise ConfigError(f"无法覆盖配置项: {dotted_key}")
    if not hasattr(target, parts[-1]):
        raise ConfigError(f"无法覆盖配置项: {dotted_key}")
    setattr(target, parts[-1], value)


def validate_config(config: Config) -> None:
    port = config.target.port
    if not isinstance(port, int) or not 0 < port < 0x10000:
        raise ConfigError(f"端口必须在 1 到 65535 之间: {port!r}")
    if config.client.transport not in TRANSPORTS:
        raise ConfigError(f"未知的传输方式: {config.client.transport}（可选 {', '.join(TRANSPORTS)}）")
    if config.client.connect_timeout <= 0 or config.client.read_timeout <= 0:
        raise ConfigError("超时时间必须为正数")
    if config.client.max_header_bytes <= 0:
        raise ConfigError("max_header_bytes 必须为正数")
    try:
        config.minimization.location_order()
        for name in config.minimization.protected:
            Location(name)
    except ValueError as exc:
        raise ConfigError(f"未知的元素位置: {exc}") from None
    if config.minimization.max_workers is not None and config.minimization.max_workers <= 0:
        raise ConfigError("max_workers 必须为正数")


def load_config(path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None) -> Config:
    config_path = Path(path or DEFAULT_CONFIG_PATH)
    if config_path.exists():
        logger.debug("读取配置文件 %s", config_path)
        with config_path.open("r", encoding="utf-8") as handle:
            try:
                data = yaml.safe_load(handle) or {}
            except yaml.YAMLError as exc:
                raise ConfigError(f"配置文件 {config_path} 解析失败: {exc}") from exc
        config = config_from_dict(data)
    elif path and path != DEFAULT_CONFIG_PATH:
        raise ConfigError(f"配置文件不存在: {config_path}")
    else:
        config = Config()
    for key, value in (overrides or {}).items():
        _apply_override(config, key, value)
    validate_config(config)
    return config
