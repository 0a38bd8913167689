from __future__ import annotations

import os
import socket
from typing import Any

import httpx

from evidentia.utils.http_client import make_sync_client


def check_openai_dns(host: str = "api.openai.com") -> tuple[bool, str]:
    try:
        socket.getaddrinfo(host, 443, type=socket.SOCK_STREAM)
        return True, f"DNS resolution succeeded for {host}"
    except OSError as exc:
        return False, f"DNS resolution failed for {host}: {exc}"


def check_generation_service(timeout_seconds: float = 12.0) -> tuple[bool, str, dict[str, Any]]:
    """
    Probe the generation service before a long pipeline run.
    Returns: (ok, summary_message, details)
    """
    key = (os.getenv("OPENAI_API_KEY") or "").strip()
    details: dict[str, Any] = {
        "url": "https://api.openai.com/v1/models",
        "status_code": None,
        "error": None,
        "api_key_present": bool(key),
    }
    headers = {"Authorization": f"Bearer {key}"} if key else {}
    with make_sync_client(timeout_seconds) as client:
        try:
            resp = client.get(details["url"], headers=headers or None)
            details["status_code"] = resp.status_code
        except httpx.HTTPError as exc:
            details["error"] = str(exc)

    if details["error"]:
        return False, f"Generation service unreachable: {details['error']}", details
    if details["status_code"] == 401:
        return False, "Generation service reachable but OPENAI_API_KEY was rejected", details
    if details["status_code"] != 200:
        return False, f"Generation service returned status {details['status_code']}", details
    return True, "Generation service reachable", details
