"""依赖物化器

职责:
- 本地依赖: 按声明方目录解析路径，只做存在性检查，不复制
- git 依赖: 计算共享缓存目录，不存在时浅克隆到临时目录，再原子 rename 到位

缓存目录本身就是缓存键，已存在即视为已拉取，不重新拉取也不重新校验；
内容是否被篡改由后续的内容哈希与锁文件比对负责发现。
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path

from nrpm.core.dep.models import Dependency, GitSource, LocalSource
from nrpm.core.exceptions import DependencyConfigError, FetchError, NrpmError
from nrpm.utils.shell import CommandExecutor, get_executor

logger = logging.getLogger(__name__)

TMP_PREFIX = ".nrpm-tmp-"


class PackageFetcher:
    """依赖物化器 - 本地路径直读 + git 浅克隆缓存"""

    def __init__(
        self,
        cache_root: str | Path,
        executor: CommandExecutor | None = None,
        git_executable: str = "git",
    ) -> None:
        self.cache_root = Path(cache_root)
        self.executor = executor or get_executor()
        self.git_executable = git_executable
        self.fetch_count = 0

    def materialize(self, dep: Dependency, declaring_dir: Path) -> Path:
        """确保依赖内容存在于本地，返回其根目录"""
        if isinstance(dep, LocalSource):
            return self._materialize_local(dep, declaring_dir)
        if isinstance(dep, GitSource):
            try:
                return self._materialize_git(dep)
            except NrpmError as e:
                raise e.add_context(f"物化依赖 {dep.identifier} 失败")
            except OSError as e:
                raise FetchError(
                    f"物化依赖时文件系统操作失败: {e}",
                    context=[f"物化依赖 {dep.identifier} 失败"],
                ) from e
        raise DependencyConfigError(f"未知的依赖类型: {type(dep).__name__}")

    @staticmethod
    def _materialize_local(dep: LocalSource, declaring_dir: Path) -> Path:
        target = dep.resolve(declaring_dir)
        if not target.exists():
            raise DependencyConfigError(f"本地依赖路径不存在: {target}")
        if not target.is_dir():
            raise DependencyConfigError(f"本地依赖路径不是目录: {target}")
        logger.debug("本地依赖: %s -> %s", dep.path, target)
        return target

    def _materialize_git(self, dep: GitSource) -> Path:
        folder = dep.folder_path(self.cache_root)
        _ensure_representable(folder)
        if folder.exists():
            logger.info("缓存命中: %s -> %s", dep.identifier, folder)
            return folder

        self._ensure_cache_root()
        # 临时目录与目标目录位于同一文件系统，rename 才是原子的
        workdir = Path(tempfile.mkdtemp(prefix=TMP_PREFIX, dir=str(self.cache_root)))
        try:
            logger.info("git clone: %s@%s", dep.url, dep.tag)
            self._clone(dep, workdir)
            self.fetch_count += 1
            folder.parent.mkdir(parents=True, exist_ok=True)
            try:
                os.rename(workdir, folder)
            except OSError:
                if not folder.is_dir():
                    raise
                # 并发解析抢先完成，丢弃本次结果，沿用已就位的目录
                logger.warning("缓存目录已被其他进程写入，沿用现有内容: %s", folder)
        finally:
            if workdir.exists():
                shutil.rmtree(workdir, ignore_errors=True)

        logger.info("已拉取: %s -> %s", dep.identifier, folder)
        return folder

    def _ensure_cache_root(self) -> None:
        if self.cache_root.exists() and not self.cache_root.is_dir():
            raise FetchError(
                f"全局依赖缓存路径不是目录: {self.cache_root}",
                hint="删除该文件或在配置中指定其他 cache_dir",
            )
        self.cache_root.mkdir(parents=True, exist_ok=True)

    def _clone(self, dep: GitSource, workdir: Path) -> None:
        cmd = [
            self.git_executable,
            "-c", "advice.detachedHead=false",
            "clone", "--quiet", "--depth", "1", "--branch", dep.tag,
            "--", dep.url, str(workdir),
        ]
        # 私有仓库缺少凭据时直接失败，而不是等待终端输入
        env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
        result = self.executor.execute(cmd, env=env)
        if not result.success:
            raise FetchError(
                f"git clone 失败 (rc={result.returncode}): {result.stderr.strip()[:500]}",
                hint="确认仓库地址可访问且 tag 存在",
            )


def _ensure_representable(path: Path) -> None:
    try:
        str(path).encode("utf-8")
    except UnicodeEncodeError:
        raise FetchError(f"缓存路径包含无法表示的字符: {path!r}") from None
