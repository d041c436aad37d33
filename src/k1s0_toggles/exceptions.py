"""toggles ライブラリの例外型定義"""

from __future__ import annotations

from typing import Self


class TogglesErrorCodes:
    """TogglesError のエラーコード定数。"""

    TRANSPORT_ERROR: str = "TRANSPORT_ERROR"
    AUTHENTICATION_FAILED: str = "AUTHENTICATION_FAILED"
    SERVER_ERROR: str = "SERVER_ERROR"
    PROTOCOL_ERROR: str = "PROTOCOL_ERROR"
    RETRIES_EXHAUSTED: str = "RETRIES_EXHAUSTED"
    INVALID_RESPONSE: str = "INVALID_RESPONSE"
    CONFIG_ERROR: str = "CONFIG_ERROR"
    READ_FILE: str = "READ_FILE_ERROR"
    PARSE_YAML: str = "PARSE_YAML_ERROR"


# 時間をおけば成功する見込みのあるコード
_RETRYABLE_CODES = frozenset(
    {
        TogglesErrorCodes.TRANSPORT_ERROR,
        TogglesErrorCodes.SERVER_ERROR,
        TogglesErrorCodes.RETRIES_EXHAUSTED,
    }
)


class TogglesError(Exception):
    """toggles ライブラリのエラー基底クラス。

    code は TogglesErrorCodes の値。retryable が True のエラーは
    次回の判定時に再取得すれば回復しうる（通信エラー、サーバーエラー、リトライ切れ）。
    """

    def __init__(
        self,
        code: str,
        message: str,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        if cause is not None:
            self.__cause__ = cause

    @property
    def retryable(self) -> bool:
        return self.code in _RETRYABLE_CODES

    def __str__(self) -> str:
        return f"{self.code}: {super().__str__()}"


class _HttpStatusError(TogglesError):
    def __init__(
        self,
        code: str,
        message: str,
        status_code: int | None = None,
        body: str = "",
        cause: Exception | None = None,
    ) -> None:
        super().__init__(code, message, cause)
        self.status_code = status_code
        self.body = body

    @classmethod
    def from_status(cls, status_code: int, message: str, body: str = "") -> Self:
        """HTTP ステータスからコードを決めて例外を作る。"""
        return cls(
            code=code_for_status(status_code),
            message=f"{message}: HTTP {status_code}",
            status_code=status_code,
            body=body,
        )


class TokenError(_HttpStatusError):
    """アクセストークン取得の失敗。"""


class FetchError(_HttpStatusError):
    """フラグ取得の失敗。"""


class ConfigError(TogglesError):
    """設定の読み込み・検証の失敗。"""


def code_for_status(status_code: int) -> str:
    """HTTP ステータスからエラーコードを決める。"""
    if status_code in (401, 403):
        return TogglesErrorCodes.AUTHENTICATION_FAILED
    if status_code >= 500:
        return TogglesErrorCodes.SERVER_ERROR
    return TogglesErrorCodes.PROTOCOL_ERROR
