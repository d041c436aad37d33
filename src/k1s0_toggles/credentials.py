"""OAuth2 Client Credentials によるアクセストークン管理"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable

import httpx
import structlog
from pydantic import ValidationError

from .config import TogglesConfig
from .exceptions import TogglesErrorCodes, TokenError
from .models import Credential, TokenResponse

logger = structlog.get_logger(__name__)

GRANT_TYPE = "client_credentials"
SCOPE = "programmatic_client"


class CredentialProvider(ABC):
    """アクセストークンプロバイダー抽象基底クラス。"""

    @abstractmethod
    def current_token(self) -> Credential:
        """保持しているトークンを返す（未取得なら取得する）。"""
        ...

    @abstractmethod
    def renew(self) -> Credential:
        """新しいトークンを取得して保持しているトークンを置き換える。"""
        ...


def new_http_client(config: TogglesConfig) -> httpx.Client:
    """設定のタイムアウトを適用した httpx.Client を生成する。"""
    return httpx.Client(
        timeout=httpx.Timeout(
            config.read_timeout_seconds,
            connect=config.connect_timeout_seconds,
        )
    )


def _is_fatal(status_code: int) -> bool:
    return status_code in (401, 403) or status_code >= 500


class HttpCredentialProvider(CredentialProvider):
    """httpx を使った OAuth2 Client Credentials フロー実装。

    401/403/5xx は即座に失敗とし、それ以外の失敗レスポンスは
    retry_delay_seconds × 試行回数 だけ待ってリトライする。
    通信エラーはリトライせずに送出する。
    """

    def __init__(
        self,
        config: TogglesConfig,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
        on_renewed: Callable[[Credential], None] | None = None,
    ) -> None:
        self._config = config
        self._owns_client = http_client is None
        self._client = http_client or new_http_client(config)
        self._sleep = sleep
        self._on_renewed = on_renewed
        self._credential: Credential | None = None
        self._lock = threading.Lock()

    @property
    def credential(self) -> Credential | None:
        return self._credential

    def current_token(self) -> Credential:
        credential = self._credential
        if credential is not None:
            return credential
        with self._lock:
            if self._credential is not None:
                return self._credential
            return self._renew_locked()

    def renew(self) -> Credential:
        with self._lock:
            return self._renew_locked()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _renew_locked(self) -> Credential:
        attempts = self._config.max_retries + 1
        response: httpx.Response | None = None
        for attempt in range(1, attempts + 1):
            response = self._request_token()
            if response.is_success:
                credential = self._parse(response)
                self._credential = credential
                logger.info("access token obtained", attempt=attempt)
                if self._on_renewed is not None:
                    self._on_renewed(credential)
                return credential
            if _is_fatal(response.status_code):
                logger.warning(
                    "token request rejected",
                    status_code=response.status_code,
                    attempt=attempt,
                )
                raise TokenError.from_status(
                    response.status_code, "Token request failed", response.text
                )
            logger.info(
                "token request failed, retrying",
                status_code=response.status_code,
                attempt=attempt,
            )
            if attempt < attempts:
                self._sleep(self._config.retry_delay_seconds * attempt)

        assert response is not None
        raise self._error_from(response, TogglesErrorCodes.RETRIES_EXHAUSTED)

    def _request_token(self) -> httpx.Response:
        try:
            return self._client.post(
                self._config.token_endpoint,
                auth=(
                    self._config.client_id,
                    self._config.client_secret.get_secret_value(),
                ),
                data={"grant_type": GRANT_TYPE, "scope": SCOPE},
                headers={"accept": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.warning("token request transport error", error=str(e))
            raise TokenError(
                code=TogglesErrorCodes.TRANSPORT_ERROR,
                message=f"Token request failed: {e}",
                cause=e,
            ) from e

    @staticmethod
    def _parse(response: httpx.Response) -> Credential:
        try:
            return Credential.from_response(TokenResponse.model_validate(response.json()))
        except (ValueError, ValidationError) as e:
            raise TokenError(
                code=TogglesErrorCodes.INVALID_RESPONSE,
                message=f"Invalid token response: {e}",
                status_code=response.status_code,
                body=response.text,
                cause=e,
            ) from e

    @staticmethod
    def _error_from(response: httpx.Response, code: str) -> TokenError:
        return TokenError(
            code=code,
            message=f"Token request failed: HTTP {response.status_code}",
            status_code=response.status_code,
            body=response.text,
        )
