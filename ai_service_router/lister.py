from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

import httpx

from ai_service_router.registry import BackendEntry, BackendRegistry

logger = logging.getLogger("uvicorn.error")

DEFAULT_LISTING_TIMEOUT_SECONDS = 5.0


def tag_model(service_name: str, model: dict[str, Any]) -> dict[str, Any]:
    return {**model, "name": f"{service_name}/{model['name']}"}


class ModelLister:
    """Fans a model listing request out to every registered backend.

    Each backend is queried concurrently with its own timeout. A backend that
    fails in any way contributes no models and never fails the whole listing.
    """

    def __init__(
        self,
        *,
        registry: BackendRegistry,
        client_getter: Callable[[], httpx.AsyncClient],
        timeout_seconds: float = DEFAULT_LISTING_TIMEOUT_SECONDS,
    ) -> None:
        self._registry = registry
        self._client_getter = client_getter
        self._timeout_seconds = timeout_seconds

    async def list_all(self) -> list[dict[str, Any]]:
        entries = list(self._registry.values())
        if not entries:
            return []
        results = await asyncio.gather(
            *(self._list_backend(entry) for entry in entries),
            return_exceptions=True,
        )
        models: list[dict[str, Any]] = []
        for entry, backend_models in zip(entries, results):
            if isinstance(backend_models, asyncio.CancelledError):
                raise backend_models
            if isinstance(backend_models, Exception):
                logger.error(
                    "model_listing_failed service=%s base_url=%s error_type=%s error=%s",
                    entry.service_name,
                    entry.base_url,
                    backend_models.__class__.__name__,
                    backend_models,
                )
                continue
            models.extend(backend_models)
        return models

    async def _fetch_tags(self, url: str) -> Any:
        response = await self._client_getter().get(url, timeout=self._timeout_seconds)
        response.raise_for_status()
        return response.json()

    async def _list_backend(self, entry: BackendEntry) -> list[dict[str, Any]]:
        try:
            # httpx timeouts apply per phase; wait_for bounds the whole call.
            body = await asyncio.wait_for(
                self._fetch_tags(entry.endpoint_url("tags")),
                timeout=self._timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "model_listing_failed service=%s base_url=%s error_type=timeout timeout_seconds=%.1f",
                entry.service_name,
                entry.base_url,
                self._timeout_seconds,
            )
            return []
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "model_listing_failed service=%s base_url=%s status=%d",
                entry.service_name,
                entry.base_url,
                exc.response.status_code,
            )
            return []
        except httpx.HTTPError as exc:
            logger.warning(
                "model_listing_failed service=%s base_url=%s error_type=%s error=%s",
                entry.service_name,
                entry.base_url,
                exc.__class__.__name__,
                str(exc) or repr(exc),
            )
            return []
        except ValueError as exc:
            logger.warning(
                "model_listing_failed service=%s base_url=%s error_type=invalid_json error=%s",
                entry.service_name,
                entry.base_url,
                exc,
            )
            return []

        if not isinstance(body, dict):
            logger.warning(
                "model_listing_failed service=%s base_url=%s error_type=invalid_body body_type=%s",
                entry.service_name,
                entry.base_url,
                type(body).__name__,
            )
            return []

        raw_models = body.get("models")
        if not isinstance(raw_models, list):
            return []

        tagged: list[dict[str, Any]] = []
        for model in raw_models:
            if not isinstance(model, dict) or not isinstance(model.get("name"), str):
                logger.debug(
                    "model_listing_entry_skipped service=%s entry=%r",
                    entry.service_name,
                    model,
                )
                continue
            tagged.append(tag_model(entry.service_name, model))
        return tagged
