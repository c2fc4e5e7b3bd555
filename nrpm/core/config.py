"""集中配置管理

支持从 YAML 文件加载 + 编程式覆盖。
缓存根目录等配置只在 DepManager / CLI 入口读取一次，之后显式向下传递。
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path

from nrpm.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "nrpm.yml"


@dataclass
class Config:
    """全局配置"""

    # 共享依赖缓存根目录，与 nargo 的默认位置一致
    cache_dir: str = "~/nargo"
    manifest_name: str = "Nargo.toml"
    lockfile_name: str = "nrpm.lock"

    git_executable: str = "git"
    # 单个目录内逐文件哈希的线程数，1 表示串行
    hash_workers: int = 1

    extra: dict = field(default_factory=dict)

    @property
    def cache_path(self) -> Path:
        return Path(self.cache_dir).expanduser()

    @classmethod
    def from_file(cls, path: str = DEFAULT_CONFIG_FILE) -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        data = load_yaml(path)
        if not data:
            return cls()
        known = {f.name for f in cls.__dataclass_fields__.values()}
        matched = {k: v for k, v in data.items() if k in known and k != "extra"}
        extra = {k: v for k, v in data.items() if k not in known}
        cfg = cls(**matched)
        cfg.extra = extra
        return cfg

    def to_dict(self) -> dict:
        return asdict(self)


_current: Config | None = None


def get_config() -> Config:
    """获取当前配置（未初始化则返回默认值）"""
    global _current  # noqa: PLW0603
    if _current is None:
        _current = Config()
    return _current


def init_config(path: str = DEFAULT_CONFIG_FILE) -> Config:
    """从文件初始化全局配置"""
    global _current  # noqa: PLW0603
    _current = Config.from_file(path)
    logger.info("配置已加载: %s", path)
    return _current


def reset_config() -> None:
    global _current  # noqa: PLW0603
    _current = None
