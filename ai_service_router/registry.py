from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from types import MappingProxyType

import httpx

from ai_service_router.settings import SERVICE_KEY_PREFIX

logger = logging.getLogger("uvicorn.error")


@dataclass(frozen=True, slots=True)
class BackendEntry:
    service_name: str
    base_url: str

    def endpoint_url(self, endpoint_suffix: str) -> str:
        return f"{self.base_url}/api/{endpoint_suffix}"


class BackendRegistry(Mapping[str, BackendEntry]):
    """Read-only mapping of service name to backend, in declaration order."""

    def __init__(self, entries: Mapping[str, BackendEntry] | None = None) -> None:
        self._entries: Mapping[str, BackendEntry] = MappingProxyType(
            dict(entries or {})
        )

    def __getitem__(self, service_name: str) -> BackendEntry:
        return self._entries[service_name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"BackendRegistry({list(self._entries)!r})"

    @property
    def service_names(self) -> list[str]:
        return list(self._entries)


def is_valid_base_url(value: str) -> bool:
    if not value or not value.strip():
        return False
    try:
        url = httpx.URL(value.strip())
    except (httpx.InvalidURL, TypeError, ValueError):
        return False
    return bool(url.scheme) and bool(url.host)


def build_registry(raw_config: Mapping[str, str]) -> BackendRegistry:
    entries: dict[str, BackendEntry] = {}
    for key, value in raw_config.items():
        if not key.startswith(SERVICE_KEY_PREFIX):
            continue
        service_name = key[len(SERVICE_KEY_PREFIX) :]
        if not service_name:
            logger.warning(
                "backend_declaration_skipped key=%s reason=empty_service_name", key
            )
            continue
        if not isinstance(value, str) or not is_valid_base_url(value):
            logger.warning(
                "backend_declaration_skipped service=%s value=%r reason=invalid_url",
                service_name,
                value,
            )
            continue
        base_url = value.strip().rstrip("/")
        entries[service_name] = BackendEntry(
            service_name=service_name, base_url=base_url
        )
        logger.info(
            "backend_registered service=%s base_url=%s", service_name, base_url
        )

    if not entries:
        logger.warning(
            "backend_registry_empty prefix=%s; proxied requests will fail until "
            "a backend is configured",
            SERVICE_KEY_PREFIX,
        )
    return BackendRegistry(entries)
