"""Health check module with dependency verification."""

from __future__ import annotations

import time
from typing import Any

from .settings import settings


def _is_configured(value: str | None) -> bool:
    """Return True when a config string is non-empty after trimming."""
    if value is None:
        return False
    return bool(str(value).strip())


class HealthChecker:
    """Reports on the store and on which outbound collaborators are configured."""

    async def check_all(self) -> dict[str, Any]:
        checks = {
            "store": await self._check_store(),
            "llm": self._check_llm(),
            "geo": self._check_geo(),
            "sentry": self._check_sentry(),
        }
        # missing LLM or maps keys degrade answers, they don't take the service down
        all_ok = all(
            check.get("status") in {"ok", "disabled", "fallback"} for check in checks.values()
        )
        return {
            "status": "healthy" if all_ok else "degraded",
            "timestamp": time.time(),
            "checks": checks,
        }

    async def _check_store(self) -> dict[str, Any]:
        try:
            from .storage import STORE

            clubs = await STORE.find("clubs", {"isApproved": True}, projection="_id")
            return {
                "status": "ok",
                "approved_clubs": len(clubs),
                "events": STORE.count("events"),
                "storage_path": str(settings.data_dir),
            }
        except Exception as exc:
            return {"status": "error", "error": str(exc), "error_type": type(exc).__name__}

    def _check_llm(self) -> dict[str, Any]:
        if not settings.llm_enabled:
            return {"status": "disabled", "reason": "OPENROUTER_API_KEY not configured"}
        return {"status": "ok", "model": settings.CHAT_MODEL, "base_url": settings.LLM_API_BASE}

    def _check_geo(self) -> dict[str, Any]:
        if not _is_configured(settings.GOOGLE_MAPS_API_KEY):
            return {"status": "fallback", "method": "haversine"}
        return {"status": "ok", "method": "distance_matrix"}

    def _check_sentry(self) -> dict[str, Any]:
        if not _is_configured(settings.SENTRY_DSN):
            return {"status": "disabled", "reason": "SENTRY_DSN not configured"}
        dsn = settings.SENTRY_DSN or ""
        if "@" in dsn and "//" in dsn:
            return {
                "status": "ok",
                "environment": settings.SENTRY_ENVIRONMENT,
                "release": settings.SENTRY_RELEASE or "unset",
            }
        return {"status": "error", "error": "Invalid SENTRY_DSN format"}


health_checker = HealthChecker()
