"""
Configuration Module
====================

Process settings and per-application configuration.

Two layers:
- Settings: process-level options loaded from environment variables
  using pydantic-settings (log level, default database driver, ...).
- AppConfig: the flat key/value mapping handed to each Application.
  Known keys are declared for documentation; unknown keys are kept as-is
  and the mapping may be mutated freely before first use.
"""

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from appframe.core import ConfigurationException


class Settings(BaseSettings):
    """
    Process settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="appframe", description="Application name")
    app_version: str = Field(default="0.3.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    default_db_driver: str = Field(
        default="mysql+pymysql",
        description="SQLAlchemy driver assumed when no dbistr is configured"
    )

    # ========== Application config ==========
    config_path: Optional[Path] = Field(
        default=None,
        description="YAML file holding the AppConfig used by the web wiring"
    )

    model_config = SettingsConfigDict(
        env_prefix="APPFRAME_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


class AppConfig(BaseModel):
    """
    Flat application configuration.

    Recognized keys:
        dbistr, dbname, dbhost, dbusername, dbpassword   database connection
        cookiename, sessiontable, sessiontime            session store
        mailhost                                         SMTP mail transport
        templatedir, templatepath                        template base directory
        sqldir                                           SQL statement directory
        error_template                                   fatal error page
        myURL, cgiurl, cgidir                            derived from the request

    Any other key is accepted and passed to templates unchanged.
    """

    model_config = ConfigDict(extra="allow")

    dbistr: Optional[str] = None
    dbname: Optional[str] = None
    dbhost: Optional[str] = None
    dbusername: Optional[str] = None
    dbpassword: Optional[str] = None

    cookiename: Optional[str] = None
    sessiontable: Optional[str] = None
    sessiontime: Optional[int] = None

    mailhost: Optional[str] = None

    templatedir: Optional[str] = None
    templatepath: Optional[str] = None
    sqldir: Optional[str] = None
    error_template: Optional[str] = None

    myURL: Optional[str] = None
    cgiurl: Optional[str] = None
    cgidir: Optional[str] = None

    @classmethod
    def from_yaml(cls, path: Path) -> "AppConfig":
        """Load configuration from a user-edited YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigurationException(f"Config file not found: {path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ConfigurationException(f"Config file must hold a mapping: {path}")
        return cls(**data)

    def _value(self, key: str) -> Any:
        if key in type(self).model_fields:
            return getattr(self, key)
        return (self.__pydantic_extra__ or {}).get(key)

    def get(self, key: str, default: Any = None) -> Any:
        value = self._value(key)
        return default if value is None else value

    def to_params(self) -> Dict[str, Any]:
        """Every key that currently has a value."""
        return {key: value for key, value in self.model_dump().items() if value is not None}

    def __getitem__(self, key: str) -> Any:
        return self._value(key)

    def __setitem__(self, key: str, value: Any) -> None:
        setattr(self, key, value)

    def __contains__(self, key: str) -> bool:
        return self._value(key) is not None
