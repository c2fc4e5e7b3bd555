"""锁文件 (nrpm.lock) 管理

文件格式 (TOML，与既有 nrpm 工具写出的锁文件互通):

    version = 0

    [[packages]]
    git = "https://github.com/org/lib"
    tag = "v1.0.0"
    blake3 = "<64 位十六进制内容哈希>"

职责:
- 加载 / 初始化 / 原子保存锁文件
- 依赖自身锁文件的交叉校验（只读）
- 根锁文件与本次解析结果对账: 剪除、校验、补录

本地路径依赖被视为可变内容，永远不会写入锁文件，发现残留条目时会被剪除。
任何哈希不一致都直接报错中止，不做自动修复。
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterator

import tomli_w

from nrpm.core.checksum import ContentHash
from nrpm.core.dep.models import GitSource
from nrpm.core.exceptions import IntegrityError, LockFormatError, TransitiveIntegrityError
from nrpm.utils.yaml_io import atomic_write

if TYPE_CHECKING:
    from nrpm.core.dep.resolver import Resolution

logger = logging.getLogger(__name__)

LOCKFILE_VERSION = 0
DEFAULT_LOCKFILE_NAME = "nrpm.lock"


@dataclass(frozen=True)
class LockEntry:
    """锁文件条目: 来源定位 (git + tag) + 内容哈希"""

    git: str
    tag: str
    blake3: str

    @property
    def identifier(self) -> str:
        return f"{self.git}@{self.tag}"

    @property
    def content_hash(self) -> ContentHash:
        return ContentHash.from_hex(self.blake3)

    def to_dict(self) -> dict[str, str]:
        return {"git": self.git, "tag": self.tag, "blake3": self.blake3}


class Lockfile:
    """锁文件文档，条目以 identifier 为键"""

    def __init__(
        self,
        version: int = LOCKFILE_VERSION,
        entries: list[LockEntry] | None = None,
    ) -> None:
        self.version = version
        self._entries: dict[str, LockEntry] = {}
        for entry in entries or []:
            self._entries[entry.identifier] = entry

    # ------------------------------------------------------------------
    # 加载 / 保存
    # ------------------------------------------------------------------

    @classmethod
    def load_or_init(cls, path: str | Path) -> Lockfile:
        """加载锁文件，不存在时返回空文档 (version 0)"""
        lock_path = Path(path)
        if not lock_path.exists():
            logger.debug("锁文件不存在，初始化空文档: %s", lock_path)
            return cls()
        try:
            with open(lock_path, "rb") as f:
                data = tomllib.load(f)
        except (tomllib.TOMLDecodeError, UnicodeDecodeError) as e:
            raise LockFormatError(
                f"锁文件不是合法的 TOML: {lock_path}: {e}",
                hint="检查锁文件是否被手工改坏",
            ) from e
        except OSError as e:
            raise LockFormatError(f"无法读取锁文件: {lock_path}: {e}") from e
        try:
            return cls.from_dict(data)
        except LockFormatError as e:
            raise e.add_context(f"加载锁文件 {lock_path} 失败")

    @classmethod
    def from_dict(cls, data: Any) -> Lockfile:
        if not isinstance(data, dict):
            raise LockFormatError("锁文件结构非法，顶层必须是映射")

        if "version" not in data:
            raise LockFormatError("锁文件结构非法，缺少 version 字段")
        version = data["version"]
        if not isinstance(version, int) or isinstance(version, bool):
            raise LockFormatError("锁文件结构非法，version 必须是整数")
        if version != LOCKFILE_VERSION:
            raise LockFormatError(
                f"不支持的锁文件版本 {version}，当前只支持版本 {LOCKFILE_VERSION}",
                hint="使用与该锁文件匹配的 nrpm 版本",
            )

        packages = data.get("packages", [])
        if packages is None:
            packages = []
        if not isinstance(packages, list):
            raise LockFormatError("锁文件结构非法，packages 必须是列表")

        lockfile = cls(version=version)
        for index, item in enumerate(packages):
            entry = _parse_entry(index, item)
            if entry.identifier in lockfile._entries:
                logger.warning("锁文件中存在重复条目，以最后一条为准: %s", entry.identifier)
            lockfile._entries[entry.identifier] = entry
        return lockfile

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "packages": [
                self._entries[key].to_dict() for key in sorted(self._entries)
            ],
        }

    def save(self, path: str | Path) -> Path:
        lock_path = Path(path)
        atomic_write(lock_path, tomli_w.dumps(self.to_dict()))
        logger.info("锁文件已保存: %s (%d 个条目)", lock_path, len(self))
        return lock_path

    # ------------------------------------------------------------------
    # 条目操作
    # ------------------------------------------------------------------

    def entry(self, identifier: str) -> LockEntry | None:
        return self._entries.get(identifier)

    def entries(self) -> Iterator[LockEntry]:
        return iter(list(self._entries.values()))

    def identifiers(self) -> set[str]:
        return set(self._entries)

    def upsert(self, dep: GitSource, content_hash: ContentHash) -> LockEntry:
        entry = LockEntry(git=dep.url, tag=dep.tag, blake3=content_hash.hex())
        self._entries[entry.identifier] = entry
        return entry

    def remove(self, identifier: str) -> bool:
        return self._entries.pop(identifier, None) is not None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._entries

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Lockfile):
            return NotImplemented
        return self.version == other.version and self._entries == other._entries

    def __repr__(self) -> str:
        return f"Lockfile(version={self.version}, entries={len(self)})"


def _parse_entry(index: int, item: Any) -> LockEntry:
    if not isinstance(item, dict):
        raise LockFormatError(f"锁文件第 {index} 个条目不是映射")
    values: dict[str, str] = {}
    for key in ("git", "tag", "blake3"):
        value = item.get(key)
        if not isinstance(value, str) or not value:
            raise LockFormatError(f"锁文件第 {index} 个条目的 {key} 字段缺失或非法")
        values[key] = value
    try:
        ContentHash.from_hex(values["blake3"])
    except ValueError as e:
        raise LockFormatError(f"锁文件第 {index} 个条目的哈希非法: {e}") from e
    return LockEntry(git=values["git"], tag=values["tag"], blake3=values["blake3"].lower())


# ----------------------------------------------------------------------
# 对账
# ----------------------------------------------------------------------


@dataclass
class ReconcileReport:
    """根锁文件对账结果"""

    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    verified: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)


def check_dependency_lockfiles(
    resolution: Resolution,
    hashes: dict[str, ContentHash],
    lockfile_name: str = DEFAULT_LOCKFILE_NAME,
) -> int:
    """校验每个依赖自带的锁文件与本次解析结果一致（只读），返回比对的条目数

    依赖 A 的锁文件记录了 A 对其下级依赖 B 的预期哈希；若 B 当前内容与之不符，
    说明 A 当初锁定的依赖已经漂移。
    """
    checked = 0
    for node in resolution.nodes.values():
        lock_path = node.package_path / lockfile_name
        if not lock_path.is_file():
            continue
        try:
            dep_lockfile = Lockfile.load_or_init(lock_path)
        except LockFormatError as e:
            raise e.add_context(f"读取依赖 {node.identifier} 的锁文件失败")

        for entry in dep_lockfile.entries():
            actual = hashes.get(entry.identifier)
            if actual is None:
                logger.warning(
                    "依赖 %s 的锁文件记录了未参与本次解析的 %s，跳过",
                    node.identifier, entry.identifier,
                )
                continue
            checked += 1
            if actual.hex() != entry.blake3:
                inner = resolution.nodes.get(entry.identifier)
                cache_hint = f" ({inner.root_path})" if inner is not None else ""
                raise TransitiveIntegrityError(
                    f"依赖 {node.identifier} 的锁文件中 {entry.identifier} 的哈希"
                    f"与当前内容不一致: 期望 {entry.blake3}, 实际 {actual.hex()}",
                    package=node.identifier,
                    dependency=entry.identifier,
                    expected=entry.blake3,
                    actual=actual.hex(),
                    hint=f"删除本地缓存{cache_hint}后重新拉取；"
                    f"若仍不一致，说明上游 tag 已被改写，请联系 {node.identifier} 的维护者",
                )
    return checked


def reconcile(
    lockfile: Lockfile,
    resolution: Resolution,
    hashes: dict[str, ContentHash],
) -> ReconcileReport:
    """根锁文件对账: 剪除 → 校验或补录

    调用方只有在本函数成功返回后才能保存锁文件。
    """
    report = ReconcileReport()

    for identifier in sorted(lockfile.identifiers()):
        node = resolution.nodes.get(identifier)
        if node is None or node.is_local:
            lockfile.remove(identifier)
            report.removed.append(identifier)
            logger.info("锁文件剪除: %s", identifier)

    for node in resolution.git_nodes():
        dep = node.dependency
        assert isinstance(dep, GitSource)
        actual = hashes[node.identifier]
        existing = lockfile.entry(node.identifier)
        if existing is None:
            lockfile.upsert(dep, actual)
            report.added.append(node.identifier)
            logger.info("锁文件新增: %s %s", node.identifier, actual.hex())
            continue
        if existing.blake3 != actual.hex():
            raise IntegrityError(
                f"依赖 {node.identifier} 的内容哈希与锁文件不一致: "
                f"期望 {existing.blake3}, 实际 {actual.hex()}",
                package=node.identifier,
                expected=existing.blake3,
                actual=actual.hex(),
                hint=f"尝试删除本地缓存 {node.root_path} 后重新拉取；"
                "若仍不一致，说明上游 tag 已被改写，确认可信后再手工移除锁文件中的该条目",
            )
        report.verified.append(node.identifier)

    return report
