"""ステージ単位のフラグ一覧をリモートから取得するフェッチャー"""

from __future__ import annotations

import httpx
import structlog
from pydantic import ValidationError

from .config import TogglesConfig
from .credentials import CredentialProvider, new_http_client
from .events import ErrorEvent, EventPublisher, FetchedEvent
from .exceptions import FetchError, TogglesError, TogglesErrorCodes
from .models import Credential, FlagSnapshot

logger = structlog.get_logger(__name__)


class RemoteFlagFetcher:
    """GET {base}/stages/{stage}/features を実行してスナップショットを返す。

    401 はトークンを更新して再試行する。その他の失敗レスポンスと通信エラーは
    Error イベントを発行してから FetchError を送出する。
    """

    def __init__(
        self,
        config: TogglesConfig,
        credentials: CredentialProvider,
        publisher: EventPublisher,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._credentials = credentials
        self._publisher = publisher
        self._max_retries = config.max_retries
        self._endpoint = config.toggles_endpoint
        self._owns_client = http_client is None
        self._client = http_client or new_http_client(config)

    @property
    def endpoint(self) -> str:
        return self._endpoint

    def set_endpoint(self, endpoint: str) -> None:
        self._endpoint = endpoint

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def fetch(self) -> FlagSnapshot | None:
        """フラグ一覧を取得する。リトライを使い切った場合は None。"""
        attempts = self._max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                credential = self._credentials.current_token()
                response = self._get(credential)
                if response.status_code == 401:
                    logger.info("flags request unauthorized, renewing token", attempt=attempt)
                    self._credentials.renew()
                    continue
            except TogglesError as e:
                self._publish_error(e)
                raise

            if response.is_success:
                snapshot = self._parse(response)
                logger.debug("flags fetched", stage=snapshot.stage, features=len(snapshot.features))
                self._publisher.publish(FetchedEvent(snapshot=snapshot))
                return snapshot

            error = FetchError.from_status(
                response.status_code, "Flags request failed", response.text
            )
            logger.warning("flags request failed", status_code=response.status_code)
            self._publish_error(error)
            raise error

        logger.warning("flags request retries exhausted", attempts=attempts)
        return None

    def _get(self, credential: Credential) -> httpx.Response:
        try:
            return self._client.get(
                self._endpoint,
                headers={
                    "Authorization": credential.authorization,
                    "accept": "application/json",
                    "Content-Type": "application/json",
                },
            )
        except httpx.HTTPError as e:
            logger.warning("flags request transport error", error=str(e))
            raise FetchError(
                code=TogglesErrorCodes.TRANSPORT_ERROR,
                message=f"Flags request failed: {e}",
                cause=e,
            ) from e

    def _parse(self, response: httpx.Response) -> FlagSnapshot:
        try:
            return FlagSnapshot.from_response(response.json())
        except (ValueError, ValidationError) as e:
            error = FetchError(
                code=TogglesErrorCodes.INVALID_RESPONSE,
                message=f"Invalid flags response: {e}",
                status_code=response.status_code,
                body=response.text,
                cause=e,
            )
            self._publish_error(error)
            raise error from e

    def _publish_error(self, error: TogglesError) -> None:
        self._publisher.publish(ErrorEvent(message=str(error), cause=error))
