"""外部命令执行工具

通过 CommandExecutor 协议抽象子进程执行，git clone 等外部调用都经由此处，
测试时注入假执行器即可，无需 patch subprocess。
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """命令执行结果（与 subprocess 解耦）"""

    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


class CommandExecutor(Protocol):
    """命令执行器协议"""

    def execute(
        self,
        cmd: list[str],
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        """执行命令并返回结果"""
        ...


class LocalExecutor:
    """本地子进程执行器（默认实现）"""

    def execute(
        self,
        cmd: list[str],
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        logger.debug("执行命令: %s (cwd=%s)", " ".join(cmd), cwd)
        r = subprocess.run(
            cmd, capture_output=True, text=True,
            cwd=cwd, env=env, check=False,
        )
        return CommandResult(
            returncode=r.returncode,
            stdout=r.stdout,
            stderr=r.stderr,
        )


_default_executor: CommandExecutor = LocalExecutor()


def get_executor() -> CommandExecutor:
    """获取全局默认命令执行器"""
    return _default_executor


def set_executor(executor: CommandExecutor) -> None:
    """替换全局默认命令执行器"""
    global _default_executor  # noqa: PLW0603
    _default_executor = executor
