"""nrpm - Noir 包管理器依赖解析与完整性校验核心"""

__version__ = "0.1.0"
