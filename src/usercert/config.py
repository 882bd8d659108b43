"""
配置加载模块：支持 .env、环境变量、工作目录 config.json（或 CONFIG_FILE 指定）多来源合并。
公开接口：
- Config: 读取配置的设置类
- config: Config 的单例实例
内部方法：
- Config.settings_customise_sources: 自定义配置来源顺序
- Config.parse_engine: 规范化 PKI 引擎名称
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Literal, Tuple

from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict, PydanticBaseSettingsSource


class Config(BaseSettings):
    # strongSwan 的 swanctl 目录，其下包含 pkcs8 / x509 / pkcs12 子目录
    base_dir: Path = Path("/etc/swanctl")
    engine: Literal["cryptography", "strongswan"] = "cryptography"
    # 申请的有效期超过 CA 到期时间时是否中止签发
    strict_lifetime: bool = True
    # 外部工具（pki / openssl）单次调用的超时时间（秒）
    tool_timeout: float = 30.0
    pki_binary: str = "pki"
    openssl_binary: str = "openssl"
    pkcs12_password: SecretStr | None = None
    # CSR 与打包用临时目录的根目录，为空时使用系统默认临时目录
    scratch_dir: Path | None = None
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="USERCERT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("engine", mode="before")
    @classmethod
    def parse_engine(cls, value: Any) -> Any:
        """允许大小写混用的引擎名称，例如 StrongSwan。"""
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @property
    def pkcs8_dir(self) -> Path:
        return self.base_dir / "pkcs8"

    @property
    def x509_dir(self) -> Path:
        return self.base_dir / "x509"

    @property
    def pkcs12_dir(self) -> Path:
        return self.base_dir / "pkcs12"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """自定义配置来源顺序：入参 > 环境变量 > .env > config.json > secrets。"""

        class JsonFileSettingsSource(PydanticBaseSettingsSource):
            """从工作目录的 config.json（或 CONFIG_FILE 指定路径）加载配置的自定义 Source。"""

            def __init__(self, settings_cls):
                super().__init__(settings_cls)
                self._data: Dict[str, Any] | None = None

            def _load(self) -> None:
                if self._data is not None:
                    return
                cfg_path = os.environ.get("CONFIG_FILE")
                path = Path(cfg_path) if cfg_path else Path.cwd() / "config.json"
                if not path.exists():
                    self._data = {}
                    return
                try:
                    with path.open("r", encoding="utf-8") as f:
                        data = json.load(f)
                    self._data = data if isinstance(data, dict) else {}
                except (OSError, ValueError):
                    self._data = {}

            def __call__(self) -> Dict[str, Any]:
                self._load()
                return dict(self._data or {})

            def get_field_value(self, field, field_name):  # type: ignore[override]
                """为满足抽象基类要求，按字段名返回字段值。"""
                self._load()
                data = self._data or {}
                if field_name in data:
                    return data[field_name], field_name, True
                return None, field_name, False

        return (
            init_settings,
            env_settings,
            dotenv_settings,
            JsonFileSettingsSource(settings_cls),
            file_secret_settings,
        )


config = Config()
