from __future__ import annotations

import asyncio
import json
import logging
import time
from enum import Enum
from typing import Any, AsyncIterator

import httpx
from fastapi import status
from fastapi.responses import StreamingResponse

from ai_service_router.errors import (
    LocalRequestError,
    StreamInterruptedError,
    UpstreamErrorStatus,
    UpstreamUnavailableError,
)
from ai_service_router.resolver import ResolvedTarget

HOP_BY_HOP_RESPONSE_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
    "content-length",
}
DEFAULT_MEDIA_TYPE = "application/json"
MAX_ERROR_BODY_BYTES = 64 * 1024

logger = logging.getLogger("uvicorn.error")


def _filter_response_headers(headers: httpx.Headers) -> list[tuple[str, str]]:
    # multi_items keeps repeated headers (set-cookie) as separate pairs
    return [
        (name, value)
        for name, value in headers.multi_items()
        if name.lower() not in HOP_BY_HOP_RESPONSE_HEADERS
    ]


def _request_error_message(exc: httpx.RequestError) -> str:
    return str(exc).strip() or repr(exc)


def _error_body_object(body: bytes) -> dict[str, Any] | None:
    if not body:
        return None
    try:
        parsed = json.loads(body)
    except ValueError:
        return None
    if isinstance(parsed, dict):
        return parsed
    return None


class StreamOutcome(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    UPSTREAM_ERROR = "upstream_error"
    CANCELLED = "cancelled"


class StreamRelay:
    """Copies an upstream body to the caller chunk by chunk.

    The relay finishes with exactly one outcome. The upstream response is
    always closed when the copy ends, including when the caller goes away, so
    an abandoned generation is never drained.
    """

    def __init__(
        self,
        *,
        upstream: httpx.Response,
        service_name: str,
        request_id: str,
    ) -> None:
        self._upstream = upstream
        self.service_name = service_name
        self.request_id = request_id
        self.outcome = StreamOutcome.PENDING
        self.bytes_relayed = 0
        self.chunks_relayed = 0

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        started = time.perf_counter()
        try:
            async for chunk in self._upstream.aiter_raw():
                self.bytes_relayed += len(chunk)
                self.chunks_relayed += 1
                yield chunk
            self.outcome = StreamOutcome.COMPLETED
        except httpx.HTTPError as exc:
            self.outcome = StreamOutcome.UPSTREAM_ERROR
            logger.warning(
                "proxy_stream_interrupted request_id=%s service=%s bytes=%d error_type=%s error=%s",
                self.request_id,
                self.service_name,
                self.bytes_relayed,
                exc.__class__.__name__,
                str(exc) or repr(exc),
            )
            raise StreamInterruptedError(
                f"Stream from service {self.service_name} was interrupted",
                service_name=self.service_name,
            ) from exc
        except (asyncio.CancelledError, GeneratorExit):
            self.outcome = StreamOutcome.CANCELLED
            raise
        finally:
            await self._upstream.aclose()
            logger.info(
                "proxy_stream_finished request_id=%s service=%s outcome=%s chunks=%d bytes=%d duration_ms=%.2f",
                self.request_id,
                self.service_name,
                self.outcome.value,
                self.chunks_relayed,
                self.bytes_relayed,
                (time.perf_counter() - started) * 1000.0,
            )


class BackendProxy:
    def __init__(
        self,
        *,
        connect_timeout_seconds: float = 5.0,
        read_timeout_seconds: float = 300.0,
        write_timeout_seconds: float = 30.0,
        pool_timeout_seconds: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(
                timeout=None,
                connect=connect_timeout_seconds,
                read=read_timeout_seconds,
                write=write_timeout_seconds,
                pool=pool_timeout_seconds,
            ),
            limits=httpx.Limits(max_connections=512, max_keepalive_connections=128),
            transport=transport,
        )

    async def close(self) -> None:
        await self.client.aclose()

    async def forward(
        self,
        target: ResolvedTarget,
        *,
        request_id: str,
    ) -> StreamingResponse:
        """Send one upstream request for ``target`` and relay its response.

        Raises ``UpstreamUnavailableError`` when no response arrives,
        ``UpstreamErrorStatus`` when the backend answers with an error status
        and ``LocalRequestError`` when the request cannot be built. Nothing is
        retried.
        """
        logger.debug(
            "proxy_forward request_id=%s service=%s target_url=%s model=%s",
            request_id,
            target.service_name,
            target.target_url,
            target.model,
        )
        try:
            request = self.client.build_request(
                method="POST",
                url=target.target_url,
                json=target.payload,
            )
        except (httpx.InvalidURL, TypeError, ValueError) as exc:
            logger.error(
                "proxy_request_build_failed request_id=%s service=%s error=%s",
                request_id,
                target.service_name,
                exc,
            )
            raise LocalRequestError(
                f"Could not build request for service {target.service_name}: {exc}"
            ) from exc

        attempt_started = time.perf_counter()
        try:
            upstream = await self.client.send(request, stream=True)
        except httpx.RequestError as exc:
            timed_out = isinstance(exc, httpx.TimeoutException)
            error_message = _request_error_message(exc)
            logger.warning(
                "proxy_request_error request_id=%s service=%s target_url=%s error_type=%s is_timeout=%s error=%s",
                request_id,
                target.service_name,
                target.target_url,
                exc.__class__.__name__,
                timed_out,
                error_message,
            )
            raise UpstreamUnavailableError(
                (
                    f"Timed out waiting for service {target.service_name}"
                    if timed_out
                    else f"Could not reach service {target.service_name}: {error_message}"
                ),
                service_name=target.service_name,
                timed_out=timed_out,
            ) from exc

        logger.info(
            "proxy_upstream_connected request_id=%s service=%s connect_ms=%.2f status=%d",
            request_id,
            target.service_name,
            (time.perf_counter() - attempt_started) * 1000.0,
            upstream.status_code,
        )

        if upstream.status_code >= status.HTTP_400_BAD_REQUEST:
            await self._raise_upstream_error(upstream, target, request_id)

        relayed_headers = _filter_response_headers(upstream.headers)
        media_type = upstream.headers.get("content-type", DEFAULT_MEDIA_TYPE)
        relay = StreamRelay(
            upstream=upstream,
            service_name=target.service_name,
            request_id=request_id,
        )
        response = StreamingResponse(
            content=relay.iter_bytes(),
            status_code=upstream.status_code,
            headers={
                "x-router-request-id": request_id,
                "x-router-service": target.service_name,
            },
            media_type=media_type,
        )
        for name, value in relayed_headers:
            if name != "content-type":
                response.headers.append(name, value)
        return response

    @staticmethod
    async def _raise_upstream_error(
        upstream: httpx.Response,
        target: ResolvedTarget,
        request_id: str,
    ) -> None:
        body = b""
        try:
            async for chunk in upstream.aiter_bytes():
                body += chunk
                if len(body) >= MAX_ERROR_BODY_BYTES:
                    break
        except httpx.HTTPError as exc:
            logger.debug(
                "proxy_error_body_unreadable request_id=%s service=%s error=%s",
                request_id,
                target.service_name,
                exc,
            )
        finally:
            await upstream.aclose()

        error_body = _error_body_object(body)
        logger.info(
            "proxy_upstream_error_status request_id=%s service=%s status=%d structured_body=%s",
            request_id,
            target.service_name,
            upstream.status_code,
            error_body is not None,
        )
        raise UpstreamErrorStatus(
            f"Service {target.service_name} responded with status {upstream.status_code}",
            service_name=target.service_name,
            status_code=upstream.status_code,
            body=error_body,
        )
