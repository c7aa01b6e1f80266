"""上游 HTTP 请求辅助（重试/退避）

- 只有网络类异常（httpx.RequestError）会重试，业务状态码（401/422 等）原样返回给调用方。
- 默认只重试读请求；语音服务的临时密钥请求没有副作用，可显式放开 POST。
- 退避：指数增长，封顶 max_backoff，再加少量 jitter。
- 最终失败的异常上带 afterthoughts_attempts，retry_suffix 据此拼出 " (after N attempts)"。
"""

from __future__ import annotations

import asyncio
import random
from typing import Any

import httpx


def _to_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except Exception:
        return default


def _to_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except Exception:
        return default


def compute_backoff_seconds(
    *,
    attempt: int,
    base: float,
    max_backoff: float,
    jitter_ratio: float,
) -> float:
    if base <= 0:
        return 0.0

    exp = max(0, int(attempt) - 1)
    delay = base * (2**exp)
    if max_backoff > 0:
        delay = min(delay, max_backoff)

    if jitter_ratio > 0:
        jitter = delay * jitter_ratio
        delay += random.random() * jitter

    return max(0.0, float(delay))


def retry_suffix(exc: BaseException) -> str:
    """已重试多次时给错误提示补一个后缀，例如 " (after 3 attempts)"。"""
    attempts_i = _to_int(getattr(exc, "afterthoughts_attempts", None), 0)
    return f" (after {attempts_i} attempts)" if attempts_i > 1 else ""


# 默认只有读请求可以安全重发；写请求重发可能重复插入
IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def _mark_attempts(exc: httpx.RequestError, *, attempts: int, method: str) -> None:
    setattr(exc, "afterthoughts_attempts", attempts)
    setattr(exc, "afterthoughts_method", method)


async def request_with_retry(
    *,
    client: httpx.AsyncClient,
    method: str,
    url: str,
    max_attempts: int,
    backoff_seconds: float,
    max_backoff_seconds: float = 5.0,
    jitter_ratio: float = 0.1,
    retry_methods: frozenset[str] = IDEMPOTENT_METHODS,
    **kwargs: Any,
) -> httpx.Response:
    """发送请求；method 在 retry_methods 内时对网络类异常做有限重试，否则只发一次。"""
    method_up = (method or "GET").upper()
    attempts = max(1, _to_int(max_attempts, 1)) if method_up in retry_methods else 1
    base = max(0.0, _to_float(backoff_seconds, 0.0))
    max_backoff = max(0.0, _to_float(max_backoff_seconds, 0.0))
    jitter = max(0.0, _to_float(jitter_ratio, 0.0))

    attempt = 1
    while True:
        try:
            return await client.request(method_up, url, **kwargs)
        except httpx.RequestError as e:
            if attempt >= attempts:
                _mark_attempts(e, attempts=attempt, method=method_up)
                raise
            delay = compute_backoff_seconds(
                attempt=attempt,
                base=base,
                max_backoff=max_backoff,
                jitter_ratio=jitter,
            )
            if delay > 0:
                await asyncio.sleep(delay)
            attempt += 1
