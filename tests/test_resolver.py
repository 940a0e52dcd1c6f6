from __future__ import annotations

import json

import pytest

from ai_service_router.registry import build_registry
from ai_service_router.resolver import (
    InvalidFormatError,
    MissingModelError,
    ResolvedTarget,
    UnknownServiceError,
    resolve,
    split_model_identifier,
)


@pytest.fixture
def registry():
    return build_registry(
        {
            "AI_SERVICE_Ollama": "http://localhost:11434",
            "AI_SERVICE_gpu": "http://gpu.internal:11434/",
        }
    )


def test_resolve_strips_prefix_and_builds_target_url(registry) -> None:
    resolution = resolve({"model": "Ollama/llama3", "prompt": "hi"}, "generate", registry)

    assert isinstance(resolution, ResolvedTarget)
    assert resolution.service_name == "Ollama"
    assert resolution.target_url == "http://localhost:11434/api/generate"
    assert resolution.payload == {"model": "llama3", "prompt": "hi"}
    assert resolution.model == "llama3"


@pytest.mark.parametrize("suffix", ["generate", "chat", "show"])
def test_resolve_uses_endpoint_suffix(registry, suffix: str) -> None:
    resolution = resolve({"model": "gpu/qwen2.5:7b"}, suffix, registry)

    assert isinstance(resolution, ResolvedTarget)
    assert resolution.target_url == f"http://gpu.internal:11434/api/{suffix}"


def test_resolve_keeps_embedded_separators_in_model_name(registry) -> None:
    resolution = resolve({"model": "Ollama/library/llama3:8b"}, "chat", registry)

    assert isinstance(resolution, ResolvedTarget)
    assert resolution.model == "library/llama3:8b"


def test_resolve_preserves_other_fields_order_and_types(registry) -> None:
    payload = {
        "stream": False,
        "model": "Ollama/llama3",
        "messages": [{"role": "user", "content": "hi"}],
        "options": {"temperature": 0.2, "num_ctx": 4096, "stop": None},
        "keep_alive": "5m",
    }

    resolution = resolve(payload, "chat", registry)

    assert isinstance(resolution, ResolvedTarget)
    assert list(resolution.payload) == list(payload)
    for key in ("stream", "messages", "options", "keep_alive"):
        assert resolution.payload[key] == payload[key]
        assert type(resolution.payload[key]) is type(payload[key])
    assert json.dumps(resolution.payload) == json.dumps({**payload, "model": "llama3"})
    # the inbound body is left untouched
    assert payload["model"] == "Ollama/llama3"


def test_resolve_falls_back_to_legacy_name_field(registry) -> None:
    resolution = resolve({"name": "Ollama/llama3", "verbose": True}, "show", registry)

    assert isinstance(resolution, ResolvedTarget)
    assert resolution.model_field == "name"
    assert resolution.payload == {"name": "llama3", "verbose": True}


def test_resolve_prefers_model_over_name(registry) -> None:
    resolution = resolve({"model": "Ollama/a", "name": "gpu/b"}, "show", registry)

    assert isinstance(resolution, ResolvedTarget)
    assert resolution.service_name == "Ollama"
    assert resolution.payload == {"model": "a", "name": "gpu/b"}


@pytest.mark.parametrize("payload", [{}, {"model": ""}, {"model": None, "name": ""}])
def test_resolve_reports_missing_model(registry, payload) -> None:
    resolution = resolve(payload, "generate", registry)

    assert isinstance(resolution, MissingModelError)
    assert resolution.status_code == 400


@pytest.mark.parametrize("identifier", ["llama3", "Ollama/", "/llama3", "/"])
def test_resolve_reports_invalid_format(registry, identifier: str) -> None:
    resolution = resolve({"model": identifier}, "generate", registry)

    assert isinstance(resolution, InvalidFormatError)
    assert resolution.status_code == 400
    assert "ServiceName/modelName" in resolution.message


def test_resolve_reports_non_string_identifier_as_invalid_format(registry) -> None:
    resolution = resolve({"model": 42}, "generate", registry)

    assert isinstance(resolution, InvalidFormatError)


def test_resolve_reports_unknown_service(registry) -> None:
    resolution = resolve({"model": "unknownsvc/x"}, "generate", registry)

    assert isinstance(resolution, UnknownServiceError)
    assert resolution.status_code == 404
    assert "unknownsvc" in resolution.message


def test_resolve_treats_invalid_registered_url_as_unknown() -> None:
    registry = build_registry({"AI_SERVICE_broken": "nope"})

    resolution = resolve({"model": "broken/x"}, "generate", registry)

    assert isinstance(resolution, UnknownServiceError)


def test_split_model_identifier() -> None:
    assert split_model_identifier("Ollama/llama3") == ("Ollama", "llama3")
    assert split_model_identifier("a/b/c") == ("a", "b/c")
    assert split_model_identifier("llama3") is None
    assert split_model_identifier("a/") is None
    assert split_model_identifier("/b") is None
