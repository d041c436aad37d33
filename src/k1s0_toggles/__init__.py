"""k1s0 toggles library."""

from .bus import BusState, LocalEventBus
from .cache import CacheEntry, RefreshCoordinator
from .client import TogglesClient
from .config import TogglesConfig, load_config
from .credentials import CredentialProvider, HttpCredentialProvider
from .events import (
    AuthenticatedEvent,
    ErrorEvent,
    EvaluatedEvent,
    EventHandler,
    EventKind,
    EventObserver,
    EventPublisher,
    FetchedEvent,
    MetricsPublishedEvent,
    ReadyEvent,
    TogglesEvent,
)
from .exceptions import ConfigError, FetchError, TogglesError, TogglesErrorCodes, TokenError
from .fetcher import RemoteFlagFetcher
from .handlers import LoggingEventHandler, MetricsEventHandler
from .models import Credential, FeatureState, FlagSnapshot, ReleaseState, TokenResponse

__all__ = [
    "AuthenticatedEvent",
    "BusState",
    "CacheEntry",
    "ConfigError",
    "Credential",
    "CredentialProvider",
    "ErrorEvent",
    "EvaluatedEvent",
    "EventHandler",
    "EventKind",
    "EventObserver",
    "EventPublisher",
    "FeatureState",
    "FetchError",
    "FetchedEvent",
    "FlagSnapshot",
    "HttpCredentialProvider",
    "LocalEventBus",
    "LoggingEventHandler",
    "MetricsEventHandler",
    "MetricsPublishedEvent",
    "ReadyEvent",
    "RefreshCoordinator",
    "ReleaseState",
    "RemoteFlagFetcher",
    "TogglesClient",
    "TogglesConfig",
    "TogglesError",
    "TogglesErrorCodes",
    "TogglesEvent",
    "TokenError",
    "TokenResponse",
    "load_config",
]
