"""事件循环定时器

所有一次性定时器（语音静音超时、错误提示自动清除、会话空闲超时）都挂在同一个
asyncio 事件循环上；测试里用可手动推进的假时钟替换 Timers。
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Coroutine
from typing import Any, Protocol

logger = logging.getLogger(__name__)

# 后台任务需要保留强引用，否则可能在完成前被 GC
_background_tasks: set[asyncio.Task] = set()


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Timers:
    """call_later + 单调时钟"""

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(max(0.0, float(delay)), callback)

    def monotonic(self) -> float:
        return time.monotonic()


def _log_task_result(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    try:
        task.result()
    except asyncio.CancelledError:
        return
    except Exception:
        logger.exception("[TASK] Background task failed: %s", task.get_name())


def spawn(coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task:
    """在当前事件循环里后台执行协程；异常只记录日志，不向调用方传播。"""
    task = asyncio.get_running_loop().create_task(coro, name=name)
    _background_tasks.add(task)
    task.add_done_callback(_log_task_result)
    return task


def cancel_timer(handle: TimerHandle | None) -> None:
    if handle is not None:
        handle.cancel()
