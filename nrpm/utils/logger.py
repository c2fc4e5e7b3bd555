"""nrpm 日志配置

命令行入口调用一次 setup_logging()，各模块只使用 logging.getLogger(__name__)。
stdout 留给命令结果，日志一律写 stderr。

JSON 模式下，若日志记录携带 NrpmError（exc_info），额外输出错误码、错误链与修复建议，
便于 CI 直接按 error_code 归类失败原因。
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import IO, Any

TEXT_FORMAT = "%(asctime)s [%(levelname)-7s] %(name)s: %(message)s"


def _error_fields(record: logging.LogRecord) -> dict[str, Any]:
    """从 exc_info 中提取业务异常的结构化字段（按属性识别，不依赖 core 层）"""
    if not record.exc_info or record.exc_info[1] is None:
        return {}
    exc = record.exc_info[1]
    code = getattr(exc, "code", None)
    chain = getattr(exc, "chain", None)
    if not isinstance(code, str) or not callable(chain):
        return {}
    fields: dict[str, Any] = {"error_code": code, "error_chain": chain()}
    hint = getattr(exc, "hint", "")
    if hint:
        fields["hint"] = hint
    return fields


class JSONFormatter(logging.Formatter):
    """结构化 JSON 日志格式器

    输出格式:
        {
            "timestamp": "2024-01-01T12:00:00+00:00",
            "level": "WARNING",
            "logger": "nrpm.core.lockfile",
            "message": "锁文件中存在重复条目，以最后一条为准: ...",
            "line": 127,
            "error_code": "INTEGRITY_ERROR",   (仅业务异常)
            "error_chain": ["...", "..."],      (仅业务异常)
            "hint": "...",                      (仅业务异常且有建议时)
            "exception": "traceback..."         (仅在有异常时)
        }
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "line": record.lineno,
        }
        entry.update(_error_fields(record))
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    stream: IO[str] | None = None,
) -> logging.Handler:
    """配置根日志器，重复调用时替换已有 handler

    参数:
        level: 日志级别名，无法识别时按 INFO 处理
        json_output: 为 True 时输出 JSON 行（NRPM_LOG_JSON=1）
        stream: 输出流，默认 sys.stderr
    """
    reset_logging()
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JSONFormatter() if json_output else logging.Formatter(TEXT_FORMAT))
    root.addHandler(handler)
    return handler


def reset_logging() -> None:
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
