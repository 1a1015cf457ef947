import importlib
import logging
import pkgutil
from types import ModuleType
from typing import Iterable

from app.integrations.platform_adapters.base_adapter import (
    AdapterResolutionError,
    BasePlatformAdapter,
)

logger = logging.getLogger(__name__)

_DISCOVERED = False
_ADAPTER_REGISTRY: dict[str, type[BasePlatformAdapter]] = {}
_SKIP_MODULES = {"base_adapter", "factory", "meta_graph"}


def _iter_subclasses(root: type[BasePlatformAdapter]) -> Iterable[type[BasePlatformAdapter]]:
    for subclass in root.__subclasses__():
        yield subclass
        yield from _iter_subclasses(subclass)


def _discover_adapter_modules() -> None:
    package = importlib.import_module("app.integrations.platform_adapters")
    if not isinstance(package, ModuleType) or not hasattr(package, "__path__"):
        return

    for module_info in pkgutil.iter_modules(package.__path__, prefix="app.integrations.platform_adapters."):
        module_name = module_info.name.rsplit(".", 1)[-1]
        if module_name in _SKIP_MODULES:
            continue
        try:
            importlib.import_module(module_info.name)
        except ImportError as exc:
            logger.warning(
                "platform_adapter_module_skip module=%s reason=%s",
                module_info.name,
                exc,
            )


def _load_registry() -> dict[str, type[BasePlatformAdapter]]:
    global _DISCOVERED
    if _DISCOVERED and _ADAPTER_REGISTRY:
        return _ADAPTER_REGISTRY

    _discover_adapter_modules()
    discovered: dict[str, type[BasePlatformAdapter]] = {}
    for adapter_cls in _iter_subclasses(BasePlatformAdapter):
        platform = (getattr(adapter_cls, "platform", "") or "").strip().lower()
        if not platform:
            continue
        discovered[platform] = adapter_cls

    _ADAPTER_REGISTRY.clear()
    _ADAPTER_REGISTRY.update(discovered)
    _DISCOVERED = True
    logger.info(
        "platform_adapter_registry_loaded total=%s platforms=%s",
        len(_ADAPTER_REGISTRY),
        ",".join(sorted(_ADAPTER_REGISTRY.keys())),
    )
    return _ADAPTER_REGISTRY


def list_registered_platforms() -> list[str]:
    return sorted(_load_registry().keys())


def get_platform_adapter(platform: str, **options) -> BasePlatformAdapter:
    normalized = platform.strip().lower()
    registry = _load_registry()
    adapter_cls = registry.get(normalized)
    if adapter_cls is None:
        logger.error(
            "platform_adapter_resolution_failed platform=%s available_platforms=%s",
            normalized,
            ",".join(sorted(registry.keys())),
        )
        raise AdapterResolutionError(f"Unsupported platform adapter: {normalized}")

    logger.debug("platform_adapter_resolved platform=%s adapter=%s", normalized, adapter_cls.__name__)
    return adapter_cls(**options)
