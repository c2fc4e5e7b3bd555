"""依赖图解析器

从根包出发，用显式工作栈遍历整个传递依赖图:

  1. 出栈一个包目录，加载并校验其清单
  2. 对每个声明的依赖计算 identifier，已见过则跳过（先解析者为准）
  3. 否则物化依赖、记录节点，并把依赖自身的包目录压栈

identifier 集合保证每个节点最多访问一次，因此遍历必然终止。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from nrpm.core.dep.fetcher import PackageFetcher
from nrpm.core.dep.manifest import DEFAULT_MANIFEST_NAME, Manifest, load_manifest
from nrpm.core.dep.models import ResolvedNode
from nrpm.core.exceptions import NrpmError

logger = logging.getLogger(__name__)


@dataclass
class Resolution:
    """一次解析的完整结果"""

    root_path: Path
    root_manifest: Manifest
    nodes: dict[str, ResolvedNode] = field(default_factory=dict)

    def git_nodes(self) -> list[ResolvedNode]:
        return [n for n in self.nodes.values() if not n.is_local]

    def __contains__(self, identifier: str) -> bool:
        return identifier in self.nodes


class DependencyResolver:
    """依赖图解析器"""

    def __init__(
        self,
        fetcher: PackageFetcher,
        manifest_name: str = DEFAULT_MANIFEST_NAME,
    ) -> None:
        self.fetcher = fetcher
        self.manifest_name = manifest_name

    def resolve(self, root: str | Path) -> Resolution:
        """解析根包的全部传递依赖

        root 可以是包目录，也可以是清单文件路径。
        """
        root_path = Path(root).resolve()
        if root_path.is_file():
            root_path = root_path.parent

        resolution: Resolution | None = None
        nodes: dict[str, ResolvedNode] = {}
        # (包目录, 所属节点 identifier；根包为 None)
        pending: list[tuple[Path, str | None]] = [(root_path, None)]

        while pending:
            pkg_path, owner = pending.pop()
            manifest = self._load(pkg_path, owner)
            if owner is None:
                resolution = Resolution(root_path=root_path, root_manifest=manifest, nodes=nodes)
            else:
                nodes[owner].manifest = manifest

            for alias, dep in manifest.dependencies.items():
                identifier = dep.identifier
                if identifier in nodes:
                    logger.debug("已解析，跳过: %s (来自 %s)", identifier, manifest.name)
                    continue
                try:
                    dep_root = self.fetcher.materialize(dep, pkg_path)
                except NrpmError as e:
                    raise e.add_context(f"包 {manifest.name} 的依赖 {alias} 获取失败")
                package_path = dep.module_path(dep_root)
                nodes[identifier] = ResolvedNode(
                    identifier=identifier,
                    alias=alias,
                    dependency=dep,
                    root_path=dep_root,
                    package_path=package_path,
                    declared_by=manifest.name,
                )
                pending.append((package_path, identifier))
                logger.info("解析依赖: %s -> %s", alias, identifier)

        assert resolution is not None
        logger.info("依赖解析完成: %s (%d 个依赖)", resolution.root_manifest.name, len(nodes))
        return resolution

    def _load(self, pkg_path: Path, owner: str | None) -> Manifest:
        try:
            manifest = load_manifest(pkg_path, self.manifest_name)
            manifest.validate_dependencies(pkg_path)
        except NrpmError as e:
            if owner is not None:
                e.add_context(f"解析依赖 {owner} 失败")
            raise
        return manifest
