from app.integrations.platform_adapters.base_adapter import (
    AdapterAuthError,
    AdapterError,
    AdapterPermanentError,
    AdapterResolutionError,
    AdapterRetryableError,
    AdapterTimeoutError,
    BasePlatformAdapter,
    CaptionTooLongError,
    PublicationContent,
    PublicationMedia,
)
from app.integrations.platform_adapters.factory import (
    get_platform_adapter,
    list_registered_platforms,
)

__all__ = [
    "AdapterResolutionError",
    "AdapterError",
    "AdapterRetryableError",
    "AdapterPermanentError",
    "AdapterAuthError",
    "AdapterTimeoutError",
    "CaptionTooLongError",
    "BasePlatformAdapter",
    "PublicationContent",
    "PublicationMedia",
    "get_platform_adapter",
    "list_registered_platforms",
]
