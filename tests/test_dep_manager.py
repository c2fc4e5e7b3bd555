"""依赖管理器测试 - 端到端的解析、拉取、哈希与锁文件对账

所有 git 依赖都由 FakeGit 提供，缓存目录位于 tmp_path 下。
"""

from __future__ import annotations

import tomllib
from pathlib import Path

import pytest
import tomli_w

from conftest import manifest_text
from nrpm.core.checksum import ContentHash, hash_dir
from nrpm.core.config import init_config
from nrpm.core.dep.fetcher import TMP_PREFIX
from nrpm.core.dep.models import GitSource
from nrpm.core.dep_manager import DepManager
from nrpm.core.exceptions import (
    DependencyConfigError,
    FetchError,
    IntegrityError,
    LockFormatError,
    TransitiveIntegrityError,
)
from nrpm.core.lockfile import Lockfile

A = GitSource(url="https://example.com/org/a", tag="v1")
B = GitSource(url="https://example.com/org/b", tag="v1")
C = GitSource(url="https://example.com/org/c", tag="v1")

B_FILES = {"Nargo.toml": manifest_text("b"), "src/lib.nr": "fn b() {}"}


def _table(dep: GitSource) -> dict[str, str]:
    return dep.to_table()


def _hash_of(files: dict[str, str], where: Path) -> ContentHash:
    """在独立目录中重建文件树并计算哈希，作为期望值"""
    for rel, content in files.items():
        target = where / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)
    return hash_dir(where)


@pytest.fixture()
def manager(cache_dir: Path, fake_git):
    def build(**kwargs) -> DepManager:
        return DepManager(cache_dir=cache_dir, executor=fake_git, **kwargs)
    return build


@pytest.fixture()
def diamond(tmp_path: Path, fake_git, make_package) -> Path:
    """root -> A, C；A -> B；C -> B"""
    fake_git.publish(B.url, B.tag, B_FILES)
    fake_git.publish(A.url, A.tag, {"Nargo.toml": manifest_text("a", {"b": _table(B)})})
    fake_git.publish(C.url, C.tag, {"Nargo.toml": manifest_text("c", {"b": _table(B)})})
    return make_package(tmp_path / "root", "root", {"a": _table(A), "c": _table(C)})


class TestInstall:
    def test_diamond_fetches_shared_dependency_once(self, diamond: Path, manager, fake_git) -> None:
        result = manager().install(diamond)

        assert set(result.resolution.nodes) == {A.identifier, B.identifier, C.identifier}
        assert fake_git.clones_of(B.url) == 1
        assert result.lock_path == diamond.resolve() / "nrpm.lock"
        assert result.lockfile.identifiers() == {A.identifier, B.identifier, C.identifier}
        assert sorted(result.report.added) == sorted([A.identifier, B.identifier, C.identifier])

    def test_lock_records_content_hash(self, diamond: Path, manager, tmp_path: Path) -> None:
        result = manager().install(diamond)

        data = tomllib.loads(result.lock_path.read_text(encoding="utf-8"))
        assert data["version"] == 0
        by_git = {p["git"]: p for p in data["packages"]}
        assert by_git[B.url] == {
            "git": B.url,
            "tag": B.tag,
            "blake3": _hash_of(B_FILES, tmp_path / "expected-b").hex(),
        }

    def test_rerun_verifies_without_fetching(self, diamond: Path, manager, fake_git) -> None:
        manager().install(diamond)
        first = (diamond / "nrpm.lock").read_bytes()
        calls = len(fake_git.calls)

        result = manager().install(diamond)

        assert len(fake_git.calls) == calls
        assert result.report.added == []
        assert sorted(result.report.verified) == sorted([A.identifier, B.identifier, C.identifier])
        assert (diamond / "nrpm.lock").read_bytes() == first

    def test_parallel_hashing_matches_serial(self, diamond: Path, manager) -> None:
        serial = manager().install(diamond)
        parallel = manager(hash_workers=4).install(diamond)
        assert serial.hashes == parallel.hashes

    def test_lockfile_name_from_config(self, diamond: Path, manager, tmp_path: Path) -> None:
        cfg = tmp_path / "nrpm.yml"
        cfg.write_text("lockfile_name: deps.lock\n", encoding="utf-8")
        init_config(str(cfg))

        result = manager().install(diamond)

        assert result.lock_path.name == "deps.lock"
        assert not (diamond / "nrpm.lock").exists()


class TestIntegrity:
    def test_tampered_cache_detected(self, diamond: Path, manager, cache_dir: Path) -> None:
        manager().install(diamond)
        lock_before = (diamond / "nrpm.lock").read_bytes()
        (B.folder_path(cache_dir) / "src" / "lib.nr").write_text("fn b() { evil() }")

        with pytest.raises(IntegrityError) as exc_info:
            manager().install(diamond)

        err = exc_info.value
        assert err.package == B.identifier
        assert err.expected != err.actual
        assert str(B.folder_path(cache_dir)) in err.hint
        assert (diamond / "nrpm.lock").read_bytes() == lock_before

    def test_removed_dependency_pruned(self, diamond: Path, manager, make_package) -> None:
        manager().install(diamond)
        make_package(diamond, "root", {"a": _table(A)})

        result = manager().install(diamond)

        assert result.report.removed == [C.identifier]
        assert Lockfile.load_or_init(diamond / "nrpm.lock").identifiers() == {A.identifier, B.identifier}

    def test_local_dependency_never_locked(self, tmp_path: Path, manager, fake_git, make_package) -> None:
        fake_git.publish(B.url, B.tag, B_FILES)
        make_package(tmp_path / "local", "local", {"b": _table(B)})
        root = make_package(tmp_path / "root", "root", {"local": {"path": "../local"}})

        result = manager().install(root)

        assert "../local" in result.resolution.nodes
        assert "../local" not in result.hashes
        assert result.lockfile.identifiers() == {B.identifier}

    def test_unchanged_dependency_lockfile_passes(self, tmp_path: Path, manager, fake_git, make_package) -> None:
        """依赖自带的 [[packages]] 格式锁文件与当前内容一致时通过"""
        expected_b = _hash_of(B_FILES, tmp_path / "expected-b")
        fake_git.publish(B.url, B.tag, B_FILES)
        fake_git.publish(A.url, A.tag, {
            "Nargo.toml": manifest_text("a", {"b": _table(B)}),
            "nrpm.lock": (
                "version = 0\n\n[[packages]]\n"
                f'git = "{B.url}"\ntag = "{B.tag}"\nblake3 = "{expected_b.hex()}"\n'
            ),
        })
        root = make_package(tmp_path / "root", "root", {"a": _table(A)})

        result = manager().install(root)

        assert result.lockfile.identifiers() == {A.identifier, B.identifier}

    def test_drifted_dependency_lockfile_rejected(self, tmp_path: Path, manager, fake_git, make_package) -> None:
        stale = Lockfile()
        stale.upsert(B, ContentHash(bytes(32)))
        fake_git.publish(B.url, B.tag, B_FILES)
        fake_git.publish(A.url, A.tag, {
            "Nargo.toml": manifest_text("a", {"b": _table(B)}),
            "nrpm.lock": tomli_w.dumps(stale.to_dict()),
        })
        root = make_package(tmp_path / "root", "root", {"a": _table(A)})

        with pytest.raises(TransitiveIntegrityError) as exc_info:
            manager().install(root)

        assert exc_info.value.package == A.identifier
        assert exc_info.value.dependency == B.identifier
        assert not (root / "nrpm.lock").exists()


class TestFailures:
    def test_invalid_declaration_fails_before_fetch(self, tmp_path: Path, manager, fake_git, make_package) -> None:
        root = make_package(tmp_path / "root", "root", {
            "bad": {"git": A.url, "tag": A.tag, "path": "../a"},
        })

        with pytest.raises(DependencyConfigError):
            manager().install(root)

        assert fake_git.calls == []
        assert not (root / "nrpm.lock").exists()

    def test_unsupported_lock_version(self, diamond: Path, manager) -> None:
        lock = diamond / "nrpm.lock"
        lock.write_text("version = 1\npackages = []\n", encoding="utf-8")

        with pytest.raises(LockFormatError, match="不支持的锁文件版本"):
            manager().install(diamond)

        assert lock.read_text(encoding="utf-8") == "version = 1\npackages = []\n"

    def test_fetch_failure_leaves_cache_clean(self, tmp_path: Path, manager, fake_git, cache_dir: Path, make_package) -> None:
        fake_git.publish(A.url, A.tag, {"Nargo.toml": manifest_text("a"), "big.nr": "x"})
        fake_git.fail_midway = True
        root = make_package(tmp_path / "root", "root", {"a": _table(A)})

        with pytest.raises(FetchError) as exc_info:
            manager().install(root)

        assert exc_info.value.chain()[0] == "包 root 的依赖 a 获取失败"
        assert not A.folder_path(cache_dir).exists()
        assert not any(p.name.startswith(TMP_PREFIX) for p in cache_dir.iterdir())
        assert not (root / "nrpm.lock").exists()
