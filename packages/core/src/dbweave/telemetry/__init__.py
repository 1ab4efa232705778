"""
监控遥测系统 - 日志初始化与格式化
"""

from .logger import get_logger, setup_logging, JsonFormatter, TextFormatter

__all__ = [
    "get_logger",
    "setup_logging",
    "JsonFormatter",
    "TextFormatter"
]
