"""测试共享 fixture: 假 git 执行器 + 清单构造工具

FakeGit 模拟远端仓库: publish(url, tag, files) 登记一个版本，
git clone 时把文件写入目标目录。所有测试都不访问网络。
"""

from __future__ import annotations

from pathlib import Path

import pytest

from nrpm.core.config import reset_config
from nrpm.utils.shell import CommandResult


class FakeGit:
    """按 CommandExecutor 协议实现的假 git"""

    def __init__(self) -> None:
        self.remotes: dict[tuple[str, str], dict[str, str | bytes]] = {}
        self.calls: list[list[str]] = []
        self.last_env: dict[str, str] | None = None
        # 写入部分文件后再返回失败，模拟中途断网
        self.fail_midway = False

    def publish(self, url: str, tag: str, files: dict[str, str | bytes]) -> None:
        self.remotes[(url, tag)] = dict(files)

    def clones_of(self, url: str) -> int:
        return sum(1 for cmd in self.calls if url in cmd)

    def execute(
        self,
        cmd: list[str],
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        self.calls.append(list(cmd))
        self.last_env = env
        sep = cmd.index("--")
        url, dest = cmd[sep + 1], Path(cmd[sep + 2])
        tag = cmd[cmd.index("--branch") + 1]

        files = self.remotes.get((url, tag))
        if files is None:
            return CommandResult(128, "", f"fatal: Remote branch {tag} not found in upstream origin")

        dest.mkdir(parents=True, exist_ok=True)
        git_dir = dest / ".git"
        git_dir.mkdir(exist_ok=True)
        # 每次克隆的 .git 内容都不同，内容哈希必须忽略它
        (git_dir / "index").write_text(f"clone-{len(self.calls)}")
        for rel, content in files.items():
            target = dest / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                target.write_bytes(content)
            else:
                target.write_text(content)
            if self.fail_midway:
                return CommandResult(1, "", "fatal: early EOF")
        return CommandResult(0, "", "")


def manifest_text(name: str, deps: dict[str, dict[str, str]] | None = None) -> str:
    lines = ["[package]", f'name = "{name}"', 'version = "0.1.0"', "", "[dependencies]"]
    for alias, table in (deps or {}).items():
        fields = ", ".join(f'{k} = "{v}"' for k, v in table.items())
        lines.append(f"{alias} = {{ {fields} }}")
    return "\n".join(lines) + "\n"


def write_package(
    path: Path, name: str, deps: dict[str, dict[str, str]] | None = None,
) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    (path / "Nargo.toml").write_text(manifest_text(name, deps))
    return path


@pytest.fixture()
def fake_git() -> FakeGit:
    return FakeGit()


@pytest.fixture()
def cache_dir(tmp_path: Path) -> Path:
    return tmp_path / "cache"


@pytest.fixture(autouse=True)
def _isolated_config():
    reset_config()
    yield
    reset_config()


@pytest.fixture()
def make_package():
    """make_package(path, name, deps) 写出一个带 Nargo.toml 的包目录"""
    return write_package
