"""YAML 文件统一读写工具

配置文件的读写统一 encoding="utf-8"、目录自动创建；atomic_write 同时用于写锁文件。
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# YAML 文件最大大小限制 (10MB)
MAX_YAML_SIZE = 10 * 1024 * 1024


def atomic_write(path: Path, content: str) -> None:
    """原子写入文件：先写同目录临时文件再 rename，中途崩溃不会留下半截文件"""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(
        dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp, str(path))
    except Exception:
        # 只捕获普通异常，不拦截 KeyboardInterrupt/SystemExit
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


def read_yaml(path: str | Path) -> Any:
    """读取 YAML 文件并原样返回解析结果（不做类型收敛）

    异常:
        FileNotFoundError: 文件不存在
        yaml.YAMLError: YAML 格式错误
        ValueError: 文件过大（超过 MAX_YAML_SIZE）
    """
    p = Path(path)
    file_size = p.stat().st_size
    if file_size > MAX_YAML_SIZE:
        raise ValueError(
            f"YAML 文件过大: {p} ({file_size} 字节), "
            f"超过限制 {MAX_YAML_SIZE} 字节"
        )
    with open(p, encoding="utf-8") as f:
        return yaml.safe_load(f)


def load_yaml(path: str | Path) -> dict[str, Any]:
    """安全读取 YAML 文件

    返回:
        dict: 解析后的字典。文件不存在、为空、或内容不是字典类型时返回空字典
    """
    p = Path(path)
    if not p.exists():
        return {}

    try:
        result = read_yaml(p)
    except yaml.YAMLError as e:
        logger.error("解析 YAML 文件失败: %s, 错误: %s", path, e)
        raise

    if result is None:
        return {}
    if not isinstance(result, dict):
        logger.warning(
            "%s 内容不是字典类型 (实际类型: %s)，返回空字典",
            path, type(result).__name__,
        )
        return {}
    return result


def save_yaml(path: str | Path, data: Any) -> None:
    """原子写入 YAML 文件，保持键顺序，允许 Unicode 字符"""
    p = Path(path)
    content = yaml.safe_dump(
        data, default_flow_style=False,
        allow_unicode=True, sort_keys=False,
    )
    atomic_write(p, content)
