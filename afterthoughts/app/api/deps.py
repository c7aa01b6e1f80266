from __future__ import annotations

from fastapi import HTTPException, Request

from ..services.client_state import ClientState, registry


async def get_client_state(request: Request) -> ClientState:
    """按 Cookie 里的 client_id 取出该浏览器的状态（中间件已保证 client_id 存在）"""
    client_id = getattr(getattr(request, "state", None), "client_id", None)
    if not client_id:
        raise HTTPException(status_code=401, detail="LOGIN_REQUIRED")
    return await registry.get(client_id)
