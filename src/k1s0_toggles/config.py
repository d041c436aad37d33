"""toggles クライアント設定（pydantic BaseModel）と YAML ローダー"""

from __future__ import annotations

import uuid
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError

from .exceptions import ConfigError, TogglesErrorCodes

DEFAULT_BASE_URL = "https://api.nifli.com"
TOKEN_PATH = "/token"
TOGGLES_PATH_TEMPLATE = "/stages/{stage}/features"


class TogglesConfig(BaseModel):
    """リモートフラグサービスへの接続設定。

    時間の単位はすべて秒。
    """

    model_config = ConfigDict(frozen=True)

    client_id: str = Field(min_length=1)
    client_secret: SecretStr
    base_token_url: str = DEFAULT_BASE_URL
    base_toggles_url: str = DEFAULT_BASE_URL
    stage: str = Field(default="development", min_length=1)
    max_retries: int = Field(default=3, ge=0)
    retry_delay_seconds: float = Field(default=0.01, ge=0.0)
    cache_ttl_seconds: float = Field(default=1.0, ge=0.0)
    cache_capacity: int = Field(default=10, ge=1)
    connect_timeout_seconds: float = Field(default=10.0, gt=0.0)
    read_timeout_seconds: float = Field(default=60.0, gt=0.0)
    fetch_on_startup: bool = False
    event_poll_interval_seconds: float = Field(default=1.0, gt=0.0)
    reraise_on_error: bool = True
    # None のときは失敗したイベントを無制限に再配信する
    max_redeliveries: int | None = Field(default=None, ge=0)
    instance_id: str = Field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def token_endpoint(self) -> str:
        return self.base_token_url.rstrip("/") + TOKEN_PATH

    @property
    def toggles_endpoint(self) -> str:
        return self.base_toggles_url.rstrip("/") + TOGGLES_PATH_TEMPLATE.format(
            stage=self.stage
        )

    def with_stage(self, stage: str) -> TogglesConfig:
        """ステージだけを差し替えた新しい設定を返す。"""
        return self.model_copy(update={"stage": stage})


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(
            code=TogglesErrorCodes.READ_FILE,
            message=f"Failed to read config file: {path}",
            cause=e,
        ) from e
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ConfigError(
            code=TogglesErrorCodes.PARSE_YAML,
            message=f"Failed to parse YAML: {path}",
            cause=e,
        ) from e
    if not isinstance(data, dict):
        raise ConfigError(
            code=TogglesErrorCodes.PARSE_YAML,
            message=f"Config root must be a mapping: {path}",
        )
    # toggles: セクションがあればそれを使う
    section = data.get("toggles", data)
    return dict(section) if isinstance(section, dict) else {}


def load_config(base_path: Path, env_path: Path | None = None) -> TogglesConfig:
    """YAML ファイルから TogglesConfig を読み込む。

    env_path が存在する場合はベース設定に上書きマージする。

    Raises:
        ConfigError: 読み込み・パース・検証に失敗した場合
    """
    data = _read_yaml(base_path)
    if env_path is not None and env_path.exists():
        data.update(_read_yaml(env_path))
    try:
        return TogglesConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(
            code=TogglesErrorCodes.CONFIG_ERROR,
            message=f"Config validation failed: {e}",
            cause=e,
        ) from e
