"""
日志系统 - 标准logging之上的格式化与初始化
支持文本格式和JSON格式，可选写入文件
"""

import json
import logging
import sys
from datetime import datetime
from typing import Optional


ROOT_LOGGER_NAME = "dbweave"

# LogRecord 自带的属性，JSON格式化时不作为额外字段输出
_RESERVED_RECORD_ATTRS = frozenset({
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'lineno', 'funcName', 'created',
    'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'exc_info', 'exc_text',
    'stack_info', 'message', 'taskName',
})


def get_logger(name: str) -> logging.Logger:
    """
    获取标准日志器

    Args:
        name: 日志器名称，通常为 __name__

    Returns:
        标准 Python 日志器
    """
    return logging.getLogger(name)


def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
    log_file: Optional[str] = None
) -> logging.Logger:
    """
    初始化 dbweave 包的日志输出

    Args:
        level: 日志级别名称
        log_format: text | json
        log_file: 可选的日志文件路径

    Returns:
        包级根日志器
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    numeric_level = getattr(logging, str(level).upper(), logging.INFO)
    logger.setLevel(numeric_level)

    # 清除现有处理器，重复调用时不会重复输出
    logger.handlers.clear()

    if log_format == "json":
        formatter: logging.Formatter = JsonFormatter(ROOT_LOGGER_NAME)
    else:
        formatter = TextFormatter()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger


class JsonFormatter(logging.Formatter):
    """JSON格式化器 - 每条日志一行JSON"""

    def __init__(self, service_name: str = ROOT_LOGGER_NAME):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        """格式化日志记录为JSON"""
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "service": self.service_name,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        # 通过 extra= 传入的自定义字段
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_ATTRS and key not in log_entry:
                log_entry[key] = value

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """文本格式化器 - 人类可读的日志格式"""

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
