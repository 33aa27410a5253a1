from .meta_client import MetaClientError, MetaGraphClient, MetaTransportError
from .report_builder import build_report
from .sync_coordinator import MetaSyncCoordinator, SyncError
from .token_manager import (
    TokenConfigurationError,
    TokenLifecycleManager,
    TokenRefreshError,
    resolve_access_token,
)

__all__ = [
    'MetaClientError',
    'MetaGraphClient',
    'MetaSyncCoordinator',
    'MetaTransportError',
    'SyncError',
    'TokenConfigurationError',
    'TokenLifecycleManager',
    'TokenRefreshError',
    'build_report',
    'resolve_access_token',
]
