"""
分层配置系统 - 显式覆盖 > 环境变量 > YAML配置文件
连接配置放在 connections.<name> 下，按名称取出后构造带类型的连接配置
"""

import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml

from .connection import BaseConnectionConfig, load_connection_config
from ..utils.errors import ConfigurationError
from ..telemetry.logger import get_logger


logger = get_logger(__name__)

ENV_PREFIX = "DBWEAVE_"
CONFIG_FILE_ENV = "DBWEAVE_CONFIG_FILE"
DEFAULT_CONFIG_FILES = ("dbweave.yaml", "dbweave.yml")


def _lookup_dotted(data: Mapping[str, Any], key: str) -> Optional[Any]:
    """按 a.b.c 形式在嵌套字典中取值"""
    current: Any = data
    for part in key.split('.'):
        if not isinstance(current, Mapping) or part not in current:
            return None
        current = current[part]
    return current


class ConfigSource(ABC):
    """配置源接口"""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """获取配置值，不存在返回None"""

    @abstractmethod
    def get_all(self) -> Dict[str, Any]:
        """获取全部配置"""


class DictConfigSource(ConfigSource):
    """字典配置源 - 最高优先级，用于代码和测试中的显式覆盖"""

    def __init__(self, values: Optional[Dict[str, Any]] = None):
        self._values = dict(values or {})

    def get(self, key: str) -> Optional[Any]:
        return _lookup_dotted(self._values, key)

    def get_all(self) -> Dict[str, Any]:
        return dict(self._values)


class EnvConfigSource(ConfigSource):
    """
    环境变量配置源
    DBWEAVE_LOG_LEVEL -> log_level
    DBWEAVE_CONNECTIONS__MAIN__HOST -> connections.main.host
    """

    def __init__(self, prefix: str = ENV_PREFIX, environ: Optional[Mapping[str, str]] = None):
        self.prefix = prefix
        self.environ = environ if environ is not None else os.environ

    def _env_name(self, key: str) -> str:
        return self.prefix + key.replace('.', '__').upper()

    def get(self, key: str) -> Optional[Any]:
        value = self.environ.get(self._env_name(key))
        if value is not None:
            return value
        nested = _lookup_dotted(self.get_all(), key)
        return nested

    def get_all(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for name, value in self.environ.items():
            if not name.startswith(self.prefix):
                continue
            parts = name[len(self.prefix):].lower().split('__')
            current = result
            for part in parts[:-1]:
                current = current.setdefault(part, {})
                if not isinstance(current, dict):
                    break
            else:
                current[parts[-1]] = value
        return result


class YamlConfigSource(ConfigSource):
    """YAML文件配置源"""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._values = self._load()

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            raise ConfigurationError(
                f"Config file not found: {self.path}",
                config_key=CONFIG_FILE_ENV
            )
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in {self.path}: {e}",
                config_key=CONFIG_FILE_ENV
            ) from e
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Config file {self.path} must contain a mapping",
                config_key=CONFIG_FILE_ENV
            )
        logger.debug(f"Loaded config file: {self.path}")
        return data

    def get(self, key: str) -> Optional[Any]:
        return _lookup_dotted(self._values, key)

    def get_all(self) -> Dict[str, Any]:
        return dict(self._values)


class DbWeaveConfig:
    """
    分层配置
    - 显式覆盖（DictConfigSource）
    - 环境变量（EnvConfigSource，前缀 DBWEAVE_）
    - YAML文件（参数指定，或 DBWEAVE_CONFIG_FILE，或工作目录下的 dbweave.yaml）
    先命中者优先
    """

    def __init__(
        self,
        config_file: Optional[Union[str, Path]] = None,
        overrides: Optional[Dict[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
        workspace_root: Optional[Path] = None
    ):
        self.workspace_root = workspace_root or Path.cwd()
        self.config_sources: List[ConfigSource] = []

        if overrides:
            self.config_sources.append(DictConfigSource(overrides))

        env_source = EnvConfigSource(environ=environ)
        self.config_sources.append(env_source)

        path = self._resolve_config_file(config_file, env_source)
        if path is not None:
            self.config_sources.append(YamlConfigSource(path))

    def _resolve_config_file(
        self,
        config_file: Optional[Union[str, Path]],
        env_source: EnvConfigSource
    ) -> Optional[Path]:
        if config_file:
            return Path(config_file)
        from_env = env_source.environ.get(CONFIG_FILE_ENV)
        if from_env:
            return Path(from_env)
        for name in DEFAULT_CONFIG_FILES:
            candidate = self.workspace_root / name
            if candidate.exists():
                return candidate
        return None

    def get(self, key: str, default: Any = None) -> Any:
        """按优先级查找配置值，支持 a.b.c 形式的键"""
        for source in self.config_sources:
            value = source.get(key)
            if value is not None:
                return value
        return default

    def list_connections(self) -> List[str]:
        """列出所有已配置的连接名称"""
        names: List[str] = []
        for source in self.config_sources:
            connections = source.get("connections")
            if isinstance(connections, Mapping):
                for name in connections:
                    if name not in names:
                        names.append(name)
        return names

    def get_connection_config(self, name: str) -> BaseConnectionConfig:
        """
        构造 connections.<name> 对应的连接配置
        同一连接的字段可以来自不同配置源（如密码来自环境变量）

        Raises:
            ConfigurationError: 未找到该连接
        """
        merged: Dict[str, Any] = {}
        # 低优先级先写入，高优先级覆盖
        for source in reversed(self.config_sources):
            section = source.get(f"connections.{name}")
            if isinstance(section, Mapping):
                merged.update(section)

        if not merged:
            raise ConfigurationError(
                f"Connection '{name}' is not configured",
                config_key=f"connections.{name}"
            )
        return load_connection_config(merged)

    @property
    def log_level(self) -> str:
        return str(self.get("log_level", "INFO"))

    @property
    def log_format(self) -> str:
        return str(self.get("log_format", "text"))

    @property
    def log_file(self) -> Optional[str]:
        return self.get("log_file")
