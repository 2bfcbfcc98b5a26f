from __future__ import annotations

import os

import jwt
from flask import Request

JWT_ALGORITHM = "HS256"


def decode_jwt(token: str, secret: str | None = None):
    secret = secret or os.getenv("JWT_SECRET")
    if not secret:
        return None
    try:
        return jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def bearer_token(req: Request | None) -> str | None:
    if req is None:
        return None
    auth_header = req.headers.get("Authorization") or ""
    if not auth_header.lower().startswith("bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def actor_from_request(req: Request | None, secret: str | None = None) -> dict | None:
    """Decode the bearer token into {"id", "role", "email", "name"}."""
    token = bearer_token(req)
    if not token:
        return None
    payload = decode_jwt(token, secret)
    if not payload:
        return None
    return {
        "id": payload.get("user_id") or payload.get("id"),
        "role": payload.get("role"),
        "email": payload.get("email"),
        "name": payload.get("name"),
    }
