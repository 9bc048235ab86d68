from __future__ import annotations

import os
from typing import Dict, Iterable, List

import azure.functions as func

DEFAULT_ALLOWED_HEADERS = [
    "authorization",
    "x-client-info",
    "apikey",
    "content-type",
    "x-user-id",
]


def _parse_origins(raw: str) -> List[str]:
    """Split comma-separated origins, honoring a wildcard if present."""
    origins: List[str] = []
    for origin in raw.split(","):
        cleaned = origin.strip()
        if not cleaned:
            continue
        if cleaned == "*":
            return ["*"]
        origins.append(cleaned)
    return origins


def allowed_origins() -> List[str]:
    return _parse_origins(os.getenv("ALLOWED_ORIGINS") or os.getenv("CORS_ALLOWED_ORIGINS") or "*")


def _allow_headers(req: func.HttpRequest) -> str:
    """
    Known client headers plus anything the browser asked for in the preflight,
    so the dashboard and the API do not drift apart.
    """
    requested = req.headers.get("Access-Control-Request-Headers", "") or ""
    merged: Dict[str, str] = {name.lower(): name for name in DEFAULT_ALLOWED_HEADERS}
    for name in requested.split(","):
        cleaned = name.strip()
        if cleaned:
            merged.setdefault(cleaned.lower(), cleaned)
    return ", ".join(merged.values())


def _normalize_methods(allowed_methods: Iterable[str]) -> List[str]:
    methods: List[str] = []
    for method in allowed_methods:
        normalized = method.strip().upper()
        if normalized and normalized not in methods:
            methods.append(normalized)
    if "OPTIONS" not in methods:
        methods.append("OPTIONS")
    return methods


def build_cors_headers(req: func.HttpRequest, allowed_methods: Iterable[str]) -> Dict[str, str]:
    """Return CORS headers for the request origin; permissive by default."""
    origins = allowed_origins()
    origin = req.headers.get("origin") or req.headers.get("Origin")
    if "*" in origins or not origins:
        allow_origin = "*"
    elif origin and origin in origins:
        allow_origin = origin
    else:
        return {"Vary": "Origin"}
    return {
        "Vary": "Origin",
        "Access-Control-Allow-Origin": allow_origin,
        "Access-Control-Allow-Methods": ", ".join(_normalize_methods(allowed_methods)),
        "Access-Control-Allow-Headers": _allow_headers(req),
    }
