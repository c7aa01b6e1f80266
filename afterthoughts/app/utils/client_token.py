from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
import time
from typing import Any


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _b64url_decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


def _sign(payload_b64url: str, secret: str) -> str:
    sig = hmac.new(
        secret.encode("utf-8"),
        payload_b64url.encode("utf-8"),
        hashlib.sha256,
    ).digest()
    return _b64url_encode(sig)


def new_client_id() -> str:
    return secrets.token_urlsafe(18)


def issue_client_token(*, secret: str, client_id: str, days: int) -> str:
    """浏览器标识 Cookie：payload.sig 两段，payload 内只有 client_id 与过期时间"""
    now = int(time.time())
    days = int(days or 0)
    if days <= 0:
        days = 30

    payload = {
        "v": 1,
        "cid": client_id,
        "iat": now,
        "exp": now + days * 24 * 60 * 60,
    }
    payload_raw = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    payload_b64 = _b64url_encode(payload_raw)
    return f"{payload_b64}.{_sign(payload_b64, secret)}"


def verify_client_token(
    token: str | None,
    *,
    secret: str,
    now: int | None = None,
) -> tuple[str | None, str]:
    """返回 (client_id, reason)；校验失败时 client_id 为 None"""
    token = (token or "").strip()
    if not token:
        return None, "missing"

    parts = token.split(".")
    if len(parts) != 2:
        return None, "format"

    payload_b64, sig_b64 = parts
    if not hmac.compare_digest(_sign(payload_b64, secret), sig_b64):
        return None, "bad_sig"

    try:
        payload: Any = json.loads(_b64url_decode(payload_b64).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return None, "bad_payload"
    if not isinstance(payload, dict) or payload.get("v") != 1:
        return None, "bad_payload"

    try:
        exp_int = int(payload.get("exp"))
    except (TypeError, ValueError):
        return None, "bad_exp"
    if exp_int < int(now if now is not None else time.time()):
        return None, "expired"

    client_id = payload.get("cid")
    if not isinstance(client_id, str) or not client_id:
        return None, "bad_cid"
    return client_id, "ok"
