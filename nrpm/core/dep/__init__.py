"""依赖解析模块

- models.py:   依赖描述符与解析节点
- manifest.py: Nargo.toml 清单加载与校验
- fetcher.py:  依赖物化（本地路径 / git 浅克隆缓存）
- resolver.py: 传递依赖图遍历
"""

from nrpm.core.dep.fetcher import PackageFetcher
from nrpm.core.dep.manifest import Manifest, load_manifest
from nrpm.core.dep.models import Dependency, GitSource, LocalSource, ResolvedNode
from nrpm.core.dep.resolver import DependencyResolver, Resolution

__all__ = [
    "Dependency",
    "DependencyResolver",
    "GitSource",
    "LocalSource",
    "Manifest",
    "PackageFetcher",
    "Resolution",
    "ResolvedNode",
    "load_manifest",
]
