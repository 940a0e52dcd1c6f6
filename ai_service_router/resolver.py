from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from fastapi import status

from ai_service_router.registry import BackendRegistry

MODEL_FIELDS = ("model", "name")


@dataclass(frozen=True, slots=True)
class ResolvedTarget:
    service_name: str
    target_url: str
    payload: dict[str, Any]
    model_field: str = "model"

    @property
    def model(self) -> str:
        return self.payload[self.model_field]


@dataclass(frozen=True, slots=True)
class MissingModelError:
    status_code: int = status.HTTP_400_BAD_REQUEST

    @property
    def message(self) -> str:
        return "Missing model name. Expected format 'ServiceName/modelName'"


@dataclass(frozen=True, slots=True)
class InvalidFormatError:
    identifier: Any
    status_code: int = status.HTTP_400_BAD_REQUEST

    @property
    def message(self) -> str:
        if not isinstance(self.identifier, str):
            return "Invalid model name: expected a string 'ServiceName/modelName'"
        return (
            f"Invalid model format '{self.identifier}'. "
            "Expected format 'ServiceName/modelName'"
        )


@dataclass(frozen=True, slots=True)
class UnknownServiceError:
    service_name: str
    status_code: int = status.HTTP_404_NOT_FOUND

    @property
    def message(self) -> str:
        return f"Service not found or invalid URL for service {self.service_name}"


ResolutionError = MissingModelError | InvalidFormatError | UnknownServiceError
Resolution = ResolvedTarget | ResolutionError


def split_model_identifier(identifier: str) -> tuple[str, str] | None:
    service_name, sep, model_name = identifier.partition("/")
    if not sep or not service_name or not model_name:
        return None
    return service_name, model_name


def _model_identifier(payload: Mapping[str, Any]) -> tuple[str, Any] | None:
    for field in MODEL_FIELDS:
        value = payload.get(field)
        if value is None or value == "":
            continue
        return field, value
    return None


def resolve(
    payload: Mapping[str, Any],
    endpoint_suffix: str,
    registry: BackendRegistry,
) -> Resolution:
    found = _model_identifier(payload)
    if found is None:
        return MissingModelError()
    field, identifier = found
    if not isinstance(identifier, str):
        return InvalidFormatError(identifier=identifier)

    parts = split_model_identifier(identifier)
    if parts is None:
        return InvalidFormatError(identifier=identifier)
    service_name, model_name = parts

    entry = registry.get(service_name)
    if entry is None:
        return UnknownServiceError(service_name=service_name)

    rewritten = dict(payload)
    rewritten[field] = model_name
    return ResolvedTarget(
        service_name=service_name,
        target_url=entry.endpoint_url(endpoint_suffix),
        payload=rewritten,
        model_field=field,
    )
