"""Nargo.toml 清单加载

职责:
- 读取包目录下的清单（或直接给定的清单文件）
- 解析 [package] 元信息与 [dependencies] 依赖表
- 校验依赖声明（字段组合、本地路径存在性）

清单每次访问包目录时重新加载，本模块从不回写清单。
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from nrpm.core.dep.models import Dependency, LocalSource, dependency_from_table
from nrpm.core.exceptions import DependencyConfigError, ManifestError, NrpmError

logger = logging.getLogger(__name__)

DEFAULT_MANIFEST_NAME = "Nargo.toml"


@dataclass
class Manifest:
    """单个包的清单内容"""

    name: str
    version: str | None = None
    dependencies: dict[str, Dependency] = field(default_factory=dict)
    path: Path | None = None

    def validate_dependencies(self, package_dir: Path) -> None:
        """校验本地依赖路径存在且为目录（字段组合已在加载时校验）"""
        for alias, dep in self.dependencies.items():
            if not isinstance(dep, LocalSource):
                continue
            target = dep.resolve(package_dir)
            if target.is_dir():
                continue
            reason = "不是目录" if target.exists() else "不存在"
            raise DependencyConfigError(
                f"本地依赖路径{reason}: {target}",
                context=[f"包 {self.name} 的依赖 {alias} 配置错误"],
            )


def manifest_file(path: Path, manifest_name: str = DEFAULT_MANIFEST_NAME) -> Path:
    """path 可以是包目录，也可以是清单文件本身"""
    return path / manifest_name if path.is_dir() else path


def load_manifest(path: str | Path, manifest_name: str = DEFAULT_MANIFEST_NAME) -> Manifest:
    """加载并解析清单

    异常:
        ManifestError: 清单不存在、TOML 语法错误、必填字段缺失
        DependencyConfigError: 依赖声明字段组合非法
    """
    file_path = manifest_file(Path(path), manifest_name)
    try:
        with open(file_path, "rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError:
        raise ManifestError(
            f"清单文件不存在: {file_path}",
            hint=f"确认目录中包含 {manifest_name}",
        ) from None
    except tomllib.TOMLDecodeError as e:
        raise ManifestError(f"清单文件解析失败: {file_path}: {e}") from e
    except OSError as e:
        raise ManifestError(f"无法读取清单文件: {file_path}: {e}") from e

    try:
        return parse_manifest(data, path=file_path)
    except NrpmError as e:
        raise e.add_context(f"加载清单 {file_path} 失败")


def parse_manifest(data: dict, path: Path | None = None) -> Manifest:
    package = data.get("package")
    if not isinstance(package, dict):
        raise ManifestError("缺少 [package] 段")
    name = package.get("name")
    if not isinstance(name, str) or not name:
        raise ManifestError("[package] 段缺少 name 字段")
    version = package.get("version")
    if version is not None and not isinstance(version, str):
        raise ManifestError("[package] 段的 version 必须是字符串")

    table = data.get("dependencies", {})
    if not isinstance(table, dict):
        raise ManifestError("[dependencies] 必须是表 (table)")

    dependencies: dict[str, Dependency] = {}
    for alias in sorted(table):
        try:
            dependencies[alias] = dependency_from_table(alias, table[alias])
        except NrpmError as e:
            raise e.add_context(f"包 {name} 的依赖 {alias} 配置错误")

    logger.debug("清单已加载: %s (%d 个依赖)", name, len(dependencies))
    return Manifest(name=name, version=version, dependencies=dependencies, path=path)
