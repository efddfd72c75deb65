"""HTTP delivery of webhook payloads."""

from __future__ import annotations

import logging
import time
from datetime import timedelta
from typing import Protocol

import httpx

from ..errors import ErrorCode, RecoverableError, UserError, suggestion_for
from ..storage.models import mask_url
from .models import DeliveryResult

logger = logging.getLogger(__name__)

USER_AGENT = "humantime-notify"


class Transport(Protocol):
    """Deliver one payload. Returns on 2xx and raises a classified error otherwise."""

    async def send(
        self, url: str, content_type: str, body: bytes, timeout: float
    ) -> DeliveryResult:
        ...


def _error_for_status(response: httpx.Response, url: str) -> Exception:
    status = response.status_code
    detail = response.text[:200].strip()
    message = f"webhook returned HTTP {status}"
    if detail:
        message = f"{message}: {detail}"
    if status == 429 or status >= 500:
        return RecoverableError(message, code=ErrorCode.NETWORK_UNAVAILABLE)
    rejected = UserError(
        message,
        code=ErrorCode.WEBHOOK_REJECTED,
        field="url",
        value=mask_url(url),
    )
    rejected.suggestion = suggestion_for(rejected)
    return rejected


class HttpxTransport:
    """POST payloads with ``httpx.AsyncClient``."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._client = client

    async def send(
        self, url: str, content_type: str, body: bytes, timeout: float
    ) -> DeliveryResult:
        headers = {"Content-Type": content_type, "User-Agent": USER_AGENT}
        started = time.monotonic()
        try:
            if self._client is not None:
                response = await self._client.post(url, content=body, headers=headers, timeout=timeout)
            else:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    response = await client.post(url, content=body, headers=headers)
        except httpx.TimeoutException as exc:
            raise RecoverableError(
                f"webhook request timed out after {timeout:g}s", code=ErrorCode.TIMEOUT, cause=exc
            ) from exc
        except httpx.TransportError as exc:
            raise RecoverableError(
                f"webhook unreachable: {exc}", code=ErrorCode.NETWORK_UNAVAILABLE, cause=exc
            ) from exc

        elapsed = timedelta(seconds=time.monotonic() - started)
        if not response.is_success:
            logger.debug(
                "Webhook delivery failed",
                extra={"url": mask_url(url), "status_code": response.status_code},
            )
            raise _error_for_status(response, url)
        return DeliveryResult(status_code=response.status_code, duration=elapsed)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()


__all__ = ["HttpxTransport", "Transport", "USER_AGENT"]
