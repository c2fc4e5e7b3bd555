"""依赖管理器

对外只暴露一个操作: install()，即"解析并校验"。

流程:
  1. 从根包出发遍历并物化整个依赖图
  2. 对每个 git 依赖的缓存目录计算内容哈希
  3. 校验每个依赖自带的锁文件（交叉一致性）
  4. 根锁文件对账: 剪除已移除的依赖，校验已有条目，补录新条目
  5. 全部通过后才保存根锁文件

任何一步失败都会抛出 NrpmError 并中止；已拉取的缓存目录保留，下次直接复用。

用法:
    from nrpm.core.dep_manager import DepManager

    dm = DepManager(cache_dir="/tmp/nargo")
    result = dm.install("path/to/project")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from nrpm.core.checksum import ContentHash, hash_dir
from nrpm.core.dep.fetcher import PackageFetcher
from nrpm.core.dep.resolver import DependencyResolver, Resolution
from nrpm.core.exceptions import ChecksumError, NrpmError
from nrpm.core.lockfile import Lockfile, ReconcileReport, check_dependency_lockfiles, reconcile
from nrpm.utils.shell import CommandExecutor

logger = logging.getLogger(__name__)


@dataclass
class InstallResult:
    """install() 的结果"""

    resolution: Resolution
    hashes: dict[str, ContentHash]
    lockfile: Lockfile
    lock_path: Path
    report: ReconcileReport


class DepManager:
    """依赖解析与完整性校验入口"""

    def __init__(
        self,
        cache_dir: str | Path | None = None,
        manifest_name: str | None = None,
        lockfile_name: str | None = None,
        hash_workers: int | None = None,
        executor: CommandExecutor | None = None,
    ) -> None:
        from nrpm.core.config import get_config
        cfg = get_config()
        self.cache_dir = Path(cache_dir).expanduser() if cache_dir else cfg.cache_path
        self.manifest_name = manifest_name or cfg.manifest_name
        self.lockfile_name = lockfile_name or cfg.lockfile_name
        self.hash_workers = hash_workers or cfg.hash_workers
        self.fetcher = PackageFetcher(
            self.cache_dir, executor=executor, git_executable=cfg.git_executable,
        )
        self.resolver = DependencyResolver(self.fetcher, manifest_name=self.manifest_name)

    def install(self, path: str | Path) -> InstallResult:
        """解析根包的全部依赖并校验 / 更新根锁文件"""
        resolution = self.resolver.resolve(path)
        hashes = self.compute_hashes(resolution)

        lock_path = resolution.root_path / self.lockfile_name
        lockfile = Lockfile.load_or_init(lock_path)

        checked = check_dependency_lockfiles(resolution, hashes, self.lockfile_name)
        logger.info("依赖锁文件交叉校验通过 (%d 个条目)", checked)

        report = reconcile(lockfile, resolution, hashes)
        lockfile.save(lock_path)
        logger.info(
            "安装完成: %s (新增 %d, 剪除 %d, 校验 %d)",
            resolution.root_manifest.name,
            len(report.added), len(report.removed), len(report.verified),
        )
        return InstallResult(
            resolution=resolution,
            hashes=hashes,
            lockfile=lockfile,
            lock_path=lock_path,
            report=report,
        )

    def compute_hashes(self, resolution: Resolution) -> dict[str, ContentHash]:
        """计算全部 git 依赖的内容哈希；本地依赖不计算"""
        hashes: dict[str, ContentHash] = {}
        for node in resolution.git_nodes():
            try:
                hashes[node.identifier] = hash_dir(node.root_path, workers=self.hash_workers)
            except NrpmError as e:
                raise e.add_context(f"计算依赖 {node.identifier} 的内容哈希失败")
            except OSError as e:
                raise ChecksumError(
                    f"读取依赖内容失败: {e}",
                    context=[f"计算依赖 {node.identifier} 的内容哈希失败"],
                ) from e
            logger.debug("内容哈希: %s %s", node.identifier, hashes[node.identifier].hex())
        return hashes
