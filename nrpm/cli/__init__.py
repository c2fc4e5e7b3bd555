"""nrpm 命令行接口

CLI 只是薄封装: 解析参数、初始化配置与日志，调用 DepManager，并负责展示错误链与修复建议。
"""

import os

import click

from nrpm import __version__
from nrpm.core.exceptions import NrpmError
from nrpm.utils.logger import setup_logging


def render_error(err: NrpmError) -> None:
    """输出错误链，修复建议单独一行"""
    chain = err.chain()
    click.echo(f"错误: {chain[0]}", err=True)
    for i, cause in enumerate(chain[1:], start=1):
        click.echo(f"  {i}: {cause}", err=True)
    if err.__cause__ is not None:
        click.echo(f"  原因: {err.__cause__}", err=True)
    if err.hint:
        click.echo(f"建议: {err.hint}", err=True)


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """nrpm - Noir 包管理器"""
    setup_logging(
        level=os.getenv("NRPM_LOG_LEVEL", "WARNING"),
        json_output=os.getenv("NRPM_LOG_JSON", "") == "1",
    )


from nrpm.cli.cmd_install import register as _reg_install  # noqa: E402

_reg_install(main)
