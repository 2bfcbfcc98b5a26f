from __future__ import annotations

import logging
from typing import Any

from flask import Request

from src.config import config

logger = logging.getLogger(__name__)


def _extract_ip(req: Request | None) -> str | None:
    if req is None:
        return None
    forwarded = req.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return req.remote_addr


def log_audit(
    action: str,
    user_id: str | None = None,
    user_role: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    req: Request | None = None,
) -> None:
    payload = {
        "user_id": user_id,
        "user_role": user_role,
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "metadata": metadata or {},
        "ip_address": _extract_ip(req),
    }
    logger.info("audit %s %s=%s by %s", action, entity_type, entity_id, user_role)

    if config.DONATION_STORE != "supabase" or not config.SUPABASE_URL:
        return
    try:
        from src.services.supabase_service import get_supabase

        get_supabase().table("audit_logs").insert(payload).execute()
    except Exception:
        # Audit logging must never break primary request flow.
        logger.warning("Audit log write failed for %s", action, exc_info=True)
