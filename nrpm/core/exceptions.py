"""统一异常体系

所有业务异常继承 NrpmError，任何一个错误都会中止整个解析流程。

每个异常携带:
- message: 最内层的错误描述
- context: 逐层追加的上下文说明（由调用方 add_context 追加）
- hint:    修复建议，与 context 分开存放，CLI 可单独高亮显示
"""

from __future__ import annotations


class NrpmError(Exception):
    """基础异常"""

    code: str = "UNKNOWN"

    def __init__(
        self,
        message: str,
        *,
        hint: str = "",
        context: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.context: list[str] = list(context or [])

    def add_context(self, message: str) -> NrpmError:
        """追加一层上下文说明，返回自身以便直接 raise"""
        self.context.append(message)
        return self

    def chain(self) -> list[str]:
        """按由外到内的顺序返回完整错误链"""
        return [*reversed(self.context), self.message]

    def __str__(self) -> str:
        return ": ".join(self.chain())


class ManifestError(NrpmError):
    """清单文件 (Nargo.toml) 缺失或无法解析"""

    code = "MANIFEST_ERROR"


class DependencyConfigError(NrpmError):
    """依赖声明字段组合非法、子目录非相对路径、本地路径不存在"""

    code = "DEPENDENCY_CONFIG_ERROR"


class FetchError(NrpmError):
    """git clone 失败或物化过程中的文件系统错误"""

    code = "FETCH_ERROR"


class ChecksumError(NrpmError):
    """计算内容哈希时遇到非常规文件或非法路径分量"""

    code = "CHECKSUM_ERROR"


class IntegrityError(NrpmError):
    """根锁文件记录的哈希与本地内容不一致"""

    code = "INTEGRITY_ERROR"

    def __init__(
        self,
        message: str,
        *,
        package: str,
        expected: str = "",
        actual: str = "",
        hint: str = "",
        context: list[str] | None = None,
    ) -> None:
        super().__init__(message, hint=hint, context=context)
        self.package = package
        self.expected = expected
        self.actual = actual


class TransitiveIntegrityError(IntegrityError):
    """依赖自身锁文件中记录的下级依赖哈希与当前解析结果不一致

    package 为锁文件所属的依赖，dependency 为发生漂移的下级依赖。
    """

    code = "TRANSITIVE_INTEGRITY_ERROR"

    def __init__(
        self,
        message: str,
        *,
        package: str,
        dependency: str,
        expected: str = "",
        actual: str = "",
        hint: str = "",
        context: list[str] | None = None,
    ) -> None:
        super().__init__(
            message, package=package, expected=expected, actual=actual,
            hint=hint, context=context,
        )
        self.dependency = dependency


class LockFormatError(NrpmError):
    """锁文件版本不受支持或结构非法"""

    code = "LOCK_FORMAT_ERROR"
