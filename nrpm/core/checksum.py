"""内容哈希计算

对一个目录（或已打包的 tar 归档）计算确定性的 BLAKE3 内容哈希:

  1. 只处理常规文件，目录本身不参与计算，符号链接 / 设备等一律报错；
     目录遍历时跳过 .git，并遵循各级 .gitignore（与打包时的文件选择一致）
  2. 每个文件单独哈希: 依次写入相对路径的各个分量，再写入文件全部内容
  3. 按路径排序后，把每个文件的摘要依次写入最终的哈希实例

排序与计算分离，因此逐文件哈希可以并行，结果仍然与遍历顺序无关。
"""

from __future__ import annotations

import logging
import os
import re
import tarfile
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Iterable

import blake3
import pathspec

from nrpm.core.exceptions import ChecksumError

logger = logging.getLogger(__name__)

DIGEST_SIZE = 32
CHUNK_SIZE = 64 * 1024

# 克隆下来的 .git 元数据不属于包内容
SKIPPED_DIRS = frozenset({".git"})
GITIGNORE_FILE = ".gitignore"

_DRIVE_RE = re.compile(r"^[A-Za-z]:")
_HEX_RE = re.compile(r"^[0-9a-f]{64}$")


@dataclass(frozen=True)
class ContentHash:
    """32 字节的内容摘要"""

    digest: bytes

    def __post_init__(self) -> None:
        if len(self.digest) != DIGEST_SIZE:
            raise ValueError(f"摘要长度必须为 {DIGEST_SIZE} 字节: {len(self.digest)}")

    def hex(self) -> str:
        return self.digest.hex()

    @classmethod
    def from_hex(cls, value: str) -> ContentHash:
        value = value.strip().lower()
        if not _HEX_RE.match(value):
            raise ValueError(f"不是合法的 {DIGEST_SIZE} 字节十六进制摘要: {value!r}")
        return cls(bytes.fromhex(value))

    def __str__(self) -> str:
        return self.hex()


def hash_dir(path: str | Path, workers: int = 1) -> ContentHash:
    """计算目录内容哈希

    workers > 1 时逐文件哈希在线程池中进行，合并顺序不受影响。
    """
    root = Path(path)
    if not root.is_dir():
        raise ChecksumError(f"不是目录: {root}")

    files = list(_walk_files(root))
    keys = [_sort_key(parts) for parts, _ in files]
    if workers > 1 and len(files) > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            digests = list(pool.map(lambda item: _hash_path(*item), files))
    else:
        digests = [_hash_path(parts, file_path) for parts, file_path in files]

    logger.debug("目录哈希: %s (%d 个文件)", root, len(files))
    return _combine(zip(keys, digests))


def hash_tarball(source: str | Path | IO[bytes]) -> ContentHash:
    """计算 tar 归档的内容哈希

    归档不含 .git 目录时，结果与解包后执行 hash_dir 一致。
    """
    if isinstance(source, (str, Path)):
        with open(source, "rb") as f:
            return hash_tarball(f)

    if source.seekable():
        source.seek(0)

    ordered: dict[tuple[bytes, ...], bytes] = {}
    try:
        with tarfile.open(fileobj=source, mode="r:*") as archive:
            for member in archive:
                if member.isdir():
                    continue
                if not member.isreg():
                    raise ChecksumError(
                        f"归档中包含非常规条目: {member.name}",
                        hint="包归档中只允许目录和常规文件",
                    )
                parts = _split_member_name(member.name)
                handle = archive.extractfile(member)
                if handle is None:
                    raise ChecksumError(f"无法读取归档条目: {member.name}")
                with handle:
                    ordered[_sort_key(parts)] = _hash_stream(parts, handle)
    except tarfile.TarError as e:
        raise ChecksumError(f"无法读取 tar 归档: {e}") from e

    return _combine(ordered.items())


@dataclass(frozen=True)
class _IgnoreRules:
    """某个目录下 .gitignore 的规则，base 为该目录相对根目录的路径分量"""

    base: tuple[str, ...]
    spec: pathspec.PathSpec


def _load_ignore_rules(directory: Path, prefix: tuple[str, ...]) -> _IgnoreRules | None:
    path = directory / GITIGNORE_FILE
    if path.is_symlink() or not path.is_file():
        return None
    with open(path, encoding="utf-8", errors="replace") as f:
        return _IgnoreRules(prefix, pathspec.GitIgnoreSpec.from_lines(f))


def _is_ignored(rules: tuple[_IgnoreRules, ...], parts: tuple[str, ...], is_dir: bool) -> bool:
    # 与 git 一致: 离条目最近的 .gitignore 中的匹配优先
    for rule in reversed(rules):
        rel = "/".join(parts[len(rule.base):])
        result = rule.spec.check_file(rel + "/" if is_dir else rel)
        if result.include is not None:
            return result.include
    return False


def _walk_files(root: Path) -> Iterable[tuple[tuple[str, ...], Path]]:
    root_rules = _load_ignore_rules(root, ())
    pending: list[tuple[tuple[str, ...], Path, tuple[_IgnoreRules, ...]]] = [
        ((), root, (root_rules,) if root_rules else ()),
    ]
    while pending:
        prefix, directory, rules = pending.pop()
        with os.scandir(directory) as it:
            for entry in it:
                parts = (*prefix, entry.name)
                is_dir = entry.is_dir(follow_symlinks=False)
                if (is_dir and entry.name in SKIPPED_DIRS) or _is_ignored(rules, parts, is_dir):
                    continue
                if entry.is_symlink():
                    raise ChecksumError(
                        f"目录中包含符号链接: {Path(directory, entry.name)}",
                        hint="包内容中只允许目录和常规文件",
                    )
                if is_dir:
                    sub_rules = _load_ignore_rules(Path(entry.path), parts)
                    pending.append(
                        (parts, Path(entry.path), (*rules, sub_rules) if sub_rules else rules)
                    )
                elif entry.is_file(follow_symlinks=False):
                    _check_components(parts)
                    yield parts, Path(entry.path)
                else:
                    raise ChecksumError(
                        f"目录中包含非常规文件: {Path(directory, entry.name)}",
                        hint="包内容中只允许目录和常规文件",
                    )


def _split_member_name(name: str) -> tuple[str, ...]:
    if name.startswith("/"):
        raise ChecksumError(f"归档条目使用了绝对路径: {name}")
    parts = tuple(name.split("/"))
    _check_components(parts, archive=True)
    return parts


def _check_components(parts: tuple[str, ...], archive: bool = False) -> None:
    """校验路径分量

    本地目录中的文件名由操作系统给出，只排除空串、. 与 ..；
    归档条目名 (archive=True) 另外拒绝反斜杠与盘符前缀。
    """
    for part in parts:
        bad = part in ("", ".", "..")
        if archive and not bad:
            bad = "\\" in part or _DRIVE_RE.match(part) is not None
        if bad:
            raise ChecksumError(f"路径中包含非法分量 {part!r}: {'/'.join(parts)}")


def _sort_key(parts: tuple[str, ...]) -> tuple[bytes, ...]:
    return tuple(os.fsencode(part) for part in parts)


def _hash_path(parts: tuple[str, ...], file_path: Path) -> bytes:
    with open(file_path, "rb") as f:
        return _hash_stream(parts, f)


def _hash_stream(parts: tuple[str, ...], stream: IO[bytes]) -> bytes:
    hasher = blake3.blake3()
    for part in parts:
        hasher.update(os.fsencode(part))
    for chunk in iter(lambda: stream.read(CHUNK_SIZE), b""):
        hasher.update(chunk)
    return hasher.digest()


def _combine(items: Iterable[tuple[tuple[bytes, ...], bytes]]) -> ContentHash:
    hasher = blake3.blake3()
    for _key, digest in sorted(items, key=lambda item: item[0]):
        hasher.update(digest)
    return ContentHash(hasher.digest())
