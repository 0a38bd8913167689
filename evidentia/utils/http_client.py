from __future__ import annotations

from typing import Any

import httpx

from evidentia.utils.config import HTTP, HttpSettings


def transport_options(timeout_seconds: float, settings: HttpSettings = HTTP) -> dict[str, Any]:
    """httpx keyword arguments shared by the generation client and the preflight check.

    ``EVIDENTIA_HTTP_TIMEOUT_SECONDS`` wins over the caller's timeout when set.
    """
    options: dict[str, Any] = {
        "timeout": settings.timeout_seconds or timeout_seconds,
        "follow_redirects": True,
        "trust_env": True,
        "verify": settings.ssl_verify,
        "headers": {"User-Agent": settings.user_agent},
    }
    if settings.proxy:
        options["proxy"] = settings.proxy
    return options


def make_async_client(timeout_seconds: float, settings: HttpSettings = HTTP) -> httpx.AsyncClient:
    return httpx.AsyncClient(**transport_options(timeout_seconds, settings))


def make_sync_client(timeout_seconds: float, settings: HttpSettings = HTTP) -> httpx.Client:
    return httpx.Client(**transport_options(timeout_seconds, settings))
