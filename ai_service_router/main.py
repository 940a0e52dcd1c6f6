from __future__ import annotations

import logging
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response

from ai_service_router.errors import ConfigurationError, RouterError
from ai_service_router.lister import ModelLister
from ai_service_router.proxy import BackendProxy
from ai_service_router.registry import BackendRegistry, build_registry
from ai_service_router.resolver import ResolvedTarget, resolve
from ai_service_router.settings import get_settings, load_service_declarations

app = FastAPI(
    title="AI Service Router",
    description=(
        "Routes Ollama-compatible requests to named backends by model prefix "
        "and aggregates their model listings."
    ),
    version="0.1.0",
)

logger = logging.getLogger("uvicorn.error")


@app.on_event("startup")
async def startup() -> None:
    settings = get_settings()
    registry = build_registry(load_service_declarations())
    proxy = BackendProxy(
        connect_timeout_seconds=settings.backend_connect_timeout_seconds,
        read_timeout_seconds=settings.backend_read_timeout_seconds,
        write_timeout_seconds=settings.backend_write_timeout_seconds,
        pool_timeout_seconds=settings.backend_pool_timeout_seconds,
    )
    app.state.settings = settings
    app.state.registry = registry
    app.state.backend_proxy = proxy
    app.state.model_lister = ModelLister(
        registry=registry,
        client_getter=lambda: proxy.client,
        timeout_seconds=settings.listing_timeout_seconds,
    )
    logger.info(
        "startup complete services=%d service_names=%s listing_timeout_seconds=%.1f",
        len(registry),
        ",".join(registry.service_names),
        settings.listing_timeout_seconds,
    )


@app.on_event("shutdown")
async def shutdown() -> None:
    proxy: BackendProxy | None = getattr(app.state, "backend_proxy", None)
    if proxy is not None:
        await proxy.close()
    logger.info("shutdown complete")


@app.get("/health")
async def health() -> dict[str, Any]:
    registry: BackendRegistry | None = getattr(app.state, "registry", None)
    return {"status": "ok", "services": len(registry) if registry is not None else 0}


@app.get("/api/tags")
async def tags() -> Response:
    lister: ModelLister | None = getattr(app.state, "model_lister", None)
    if lister is None:
        return JSONResponse(
            status_code=500, content={"error": "Model lister is not initialized"}
        )
    models = await lister.list_all()
    return JSONResponse(content={"models": models})


async def _proxy_post(request: Request, endpoint_suffix: str) -> Response:
    try:
        payload = await request.json()
    except Exception as exc:
        raise HTTPException(
            status_code=400, detail=f"Expected JSON body: {exc}"
        ) from exc

    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=400, detail="Expected a JSON object request body."
        )

    request_id = (
        request.headers.get("x-request-id")
        or request.headers.get("x-correlation-id")
        or uuid4().hex[:12]
    )
    registry: BackendRegistry = app.state.registry
    resolution = resolve(payload, endpoint_suffix, registry)
    if not isinstance(resolution, ResolvedTarget):
        logger.info(
            "model_resolution_failed request_id=%s endpoint=%s reason=%s message=%s",
            request_id,
            endpoint_suffix,
            type(resolution).__name__,
            resolution.message,
        )
        return JSONResponse(
            status_code=resolution.status_code,
            content={"error": resolution.message},
            headers={"x-router-request-id": request_id},
        )

    proxy: BackendProxy = app.state.backend_proxy
    return await proxy.forward(resolution, request_id=request_id)


@app.post("/api/generate")
async def generate(request: Request) -> Response:
    return await _proxy_post(request, "generate")


@app.post("/api/chat")
async def chat(request: Request) -> Response:
    return await _proxy_post(request, "chat")


@app.post("/api/show")
async def show(request: Request) -> Response:
    return await _proxy_post(request, "show")


@app.exception_handler(HTTPException)
async def http_error_handler(_: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(RouterError)
async def router_error_handler(_: Request, exc: RouterError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_content())


def run() -> None:
    import uvicorn

    try:
        settings = get_settings()
    except ConfigurationError as exc:
        logger.critical("startup aborted: %s", exc.message)
        raise SystemExit(1) from exc

    uvicorn.run(
        "ai_service_router.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    run()
