"""toggles データモデル"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

BEARER_PREFIX = "Bearer"


class _WireModel(BaseModel):
    # 未知のフィールドは無視する
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


class ReleaseState(_WireModel):
    """リリースの有効状態。"""

    enabled: bool = False


class FeatureState(_WireModel):
    """フィーチャーの有効状態と関連リリース。"""

    enabled: bool = Field(
        default=False,
        validation_alias=AliasChoices("enabled", "featureEnabled"),
    )
    release: str | None = None

    @field_validator("enabled", mode="before")
    @classmethod
    def _none_is_false(cls, value: Any) -> Any:
        return False if value is None else value

    @field_validator("release", mode="before")
    @classmethod
    def _release_id(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return value.get("id")
        return value


class FlagSnapshot(_WireModel):
    """1 ステージ分のフィーチャー・リリース状態のスナップショット。"""

    stage: str | None = None
    features: dict[str, FeatureState] = Field(default_factory=dict)
    releases: dict[str, ReleaseState] = Field(default_factory=dict)

    @field_validator("stage", mode="before")
    @classmethod
    def _stage_name(cls, value: Any) -> Any:
        if isinstance(value, dict):
            for key in ("slug", "name", "id"):
                if value.get(key):
                    return str(value[key])
            return None
        return value

    @field_validator("features", "releases", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return {} if value is None else value

    @classmethod
    def from_response(cls, data: Any) -> FlagSnapshot:
        """レスポンス JSON からスナップショットを生成する。"""
        return cls.model_validate(data)

    def feature(self, name: str) -> FeatureState | None:
        return self.features.get(name)

    def has_feature(self, name: str) -> bool:
        return name in self.features

    def evaluate(self, name: str) -> bool | None:
        """フィーチャーを評価する。

        フィーチャー自体が有効、または関連リリースが有効であれば True。
        未知のフィーチャーは None を返し、呼び出し側がデフォルト値を選ぶ。
        """
        state = self.features.get(name)
        if state is None:
            return None
        if state.enabled:
            return True
        if state.release is not None:
            release = self.releases.get(state.release)
            if release is not None and release.enabled:
                return True
        return False


class TokenResponse(_WireModel):
    """トークンエンドポイントのレスポンス。"""

    access_token: str
    token_type: str = "bearer"
    expires_in: int | None = None
    scope: str | None = None
    refresh_token: str | None = None
    id_token: str | None = None


@dataclass(frozen=True)
class Credential:
    """Bearer アクセストークン。更新時は新しいインスタンスに置き換える。"""

    access_token: str
    token_type: str = BEARER_PREFIX
    obtained_at: float = field(default_factory=time.time)

    @property
    def authorization(self) -> str:
        """Authorization ヘッダー値。"""
        return f"{BEARER_PREFIX} {self.access_token}"

    @classmethod
    def from_response(cls, response: TokenResponse) -> Credential:
        return cls(access_token=response.access_token, token_type=response.token_type)
