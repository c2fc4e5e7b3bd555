"""依赖数据模型

依赖描述符是一个封闭的二选一类型:
- GitSource:   git 地址 + 精确 tag，可选子目录
- LocalSource: 本地路径（绝对或相对于声明方包目录），可选子目录

identifier 是去重键: 相同的 identifier 被视为指向相同的内容。
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import TYPE_CHECKING, Any, Union
from urllib.parse import urlsplit

from nrpm.core.exceptions import DependencyConfigError, ManifestError

if TYPE_CHECKING:
    from nrpm.core.dep.manifest import Manifest

DESCRIPTOR_FIELDS = ("git", "tag", "directory", "path")


@dataclass(frozen=True)
class GitSource:
    """git 依赖"""

    url: str
    tag: str
    directory: str | None = None

    is_local = False

    @property
    def identifier(self) -> str:
        return f"{self.url}@{self.tag}"

    def folder_path(self, cache_root: Path) -> Path:
        """共享缓存中的目录: <cache_root>/<host>/<url 路径>/<tag>

        该路径本身就是缓存键，相同 (url, tag) 总是映射到同一目录。
        """
        parts = urlsplit(self.url)
        host = parts.hostname
        if not host:
            raise DependencyConfigError(f"git 地址中没有主机名: {self.url}")
        url_segments = [s for s in parts.path.split("/") if s]
        tag_segments = [s for s in self.tag.split("/") if s]
        if not tag_segments:
            raise DependencyConfigError(f"tag 无效: {self.tag!r}")
        for segment in (host, *url_segments, *tag_segments):
            if segment in (".", ".."):
                raise DependencyConfigError(
                    f"git 地址或 tag 中包含非法路径分量: {self.identifier}"
                )
        return Path(cache_root, host, *url_segments, *tag_segments)

    def module_path(self, root_path: Path) -> Path:
        return _join_directory(root_path, self.directory)

    def to_table(self) -> dict[str, str]:
        table = {"git": self.url, "tag": self.tag}
        if self.directory:
            table["directory"] = self.directory
        return table


@dataclass(frozen=True)
class LocalSource:
    """本地路径依赖，内容实时读取，不缓存、不记入锁文件"""

    path: str
    directory: str | None = None

    is_local = True

    @property
    def identifier(self) -> str:
        return self.path

    def resolve(self, declaring_dir: Path) -> Path:
        """相对路径按声明方包目录解析"""
        candidate = Path(self.path).expanduser()
        if candidate.is_absolute():
            return candidate
        return declaring_dir / candidate

    def module_path(self, root_path: Path) -> Path:
        return _join_directory(root_path, self.directory)

    def to_table(self) -> dict[str, str]:
        table = {"path": self.path}
        if self.directory:
            table["directory"] = self.directory
        return table


Dependency = Union[GitSource, LocalSource]


@dataclass
class ResolvedNode:
    """一次解析中某个 identifier 对应的唯一节点

    root_path 是物化后的根目录（git 依赖即缓存目录），
    package_path 是叠加 directory 后真正的包目录。
    manifest 在该包出栈处理时填充。
    """

    identifier: str
    alias: str
    dependency: Dependency
    root_path: Path
    package_path: Path
    declared_by: str
    manifest: Manifest | None = None

    @property
    def is_local(self) -> bool:
        return self.dependency.is_local


def dependency_from_table(alias: str, table: Any) -> Dependency:
    """把清单中的一条依赖声明转换为描述符，同时校验字段组合"""
    if not isinstance(table, dict):
        raise ManifestError(f"依赖 {alias} 的声明必须是表 (table)")

    values: dict[str, str | None] = {}
    for key in DESCRIPTOR_FIELDS:
        value = table.get(key)
        if value is not None and not isinstance(value, str):
            raise ManifestError(f"依赖 {alias} 的字段 {key} 必须是字符串")
        if value == "":
            raise DependencyConfigError(f"字段 {key} 不能为空")
        values[key] = value

    git, tag, path, directory = (
        values["git"], values["tag"], values["path"], values["directory"],
    )
    if path is not None and git is not None:
        raise DependencyConfigError("path 与 git 不能同时指定")
    if path is not None and tag is not None:
        raise DependencyConfigError("path 与 tag 不能同时指定")
    if git is not None and tag is None:
        raise DependencyConfigError("git 依赖必须指定 tag")
    if tag is not None and git is None:
        raise DependencyConfigError("tag 必须与 git 一同指定")
    if directory is not None and _is_absolute(directory):
        raise DependencyConfigError(f"directory 必须是相对路径: {directory}")

    if git is not None and tag is not None:
        return GitSource(url=git, tag=tag, directory=directory)
    if path is not None:
        return LocalSource(path=path, directory=directory)
    raise DependencyConfigError("必须指定 path 或 git 之一")


def _is_absolute(value: str) -> bool:
    return PurePosixPath(value).is_absolute() or PureWindowsPath(value).is_absolute()


def _join_directory(root_path: Path, directory: str | None) -> Path:
    if not directory:
        return root_path
    return root_path / directory
