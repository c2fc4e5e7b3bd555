"""CLI: 依赖安装与内容哈希命令"""

from __future__ import annotations

import logging
from pathlib import Path

import click

from nrpm.core.exceptions import NrpmError

logger = logging.getLogger(__name__)


def register(group: click.Group) -> None:
    group.add_command(install)
    group.add_command(hash_cmd)


@click.command()
@click.option("--path", "-p", "path", default=".", help="项目目录或 Nargo.toml 路径")
@click.option("--cache-dir", default=None, help="共享依赖缓存目录（默认读取配置）")
@click.option("--config", "-c", "config", default=None, help="配置文件路径（默认为项目目录下的 nrpm.yml）")
def install(path: str, cache_dir: str | None, config: str | None) -> None:
    """解析并安装项目的全部依赖，校验 / 更新 nrpm.lock"""
    from nrpm.cli import render_error
    from nrpm.core.config import DEFAULT_CONFIG_FILE, init_config
    from nrpm.core.dep_manager import DepManager

    if config is None:
        project = Path(path)
        if project.is_file():
            project = project.parent
        config = str(project / DEFAULT_CONFIG_FILE)
    init_config(config)
    try:
        result = DepManager(cache_dir=cache_dir).install(path)
    except NrpmError as e:
        logger.debug("安装失败", exc_info=e)
        render_error(e)
        raise SystemExit(1) from None

    for node in sorted(result.resolution.nodes.values(), key=lambda n: n.identifier):
        digest = result.hashes.get(node.identifier)
        label = digest.hex()[:16] if digest else "local"
        click.echo(f"  {node.alias:20s} {node.identifier}  [{label}]")
    report = result.report
    click.echo(
        f"就绪: {len(result.resolution.nodes)} 个依赖 "
        f"(新增 {len(report.added)}, 剪除 {len(report.removed)}, 校验 {len(report.verified)})"
    )


@click.command(name="hash")
@click.argument("target", type=click.Path(exists=True))
def hash_cmd(target: str) -> None:
    """计算目录或 tar 归档的内容哈希"""
    from nrpm.cli import render_error
    from nrpm.core.checksum import hash_dir, hash_tarball

    p = Path(target)
    try:
        digest = hash_dir(p) if p.is_dir() else hash_tarball(p)
    except NrpmError as e:
        render_error(e)
        raise SystemExit(1) from None
    click.echo(digest.hex())
