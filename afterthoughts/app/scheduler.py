"""Scheduler for editor autosave jobs"""
import logging
from collections.abc import Awaitable, Callable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)


class AutosaveScheduler:
    """编辑器自动保存的周期任务调度器

    每个打开的编辑器（新建 composer / 编辑弹窗）对应一个 interval job，
    job_id 形如 `autosave:<client_id>:<diary_id>`，关闭编辑器时必须 remove。
    """

    def __init__(self):
        # 关键约束：
        # - max_instances=1：上一次保存未完成时不并发启动下一次（等价于 saving 防重）
        # - coalesce=True：如果发生 misfire，则合并为一次执行（避免堆积）
        self.scheduler = AsyncIOScheduler(
            job_defaults={"coalesce": True, "max_instances": 1}
        )

    def add_interval_job(
        self,
        job_id: str,
        func: Callable[[], Awaitable[object]],
        *,
        seconds: float,
    ) -> None:
        """注册（或替换）一个周期任务"""
        self.scheduler.add_job(
            func,
            trigger=IntervalTrigger(seconds=seconds),
            id=job_id,
            name=f"Autosave every {seconds:g} seconds",
            replace_existing=True,
        )
        logger.debug("[SCHEDULER] Job added: %s every %ss", job_id, seconds)

    def remove_job(self, job_id: str) -> None:
        """移除周期任务；不存在时静默返回（关闭路径可能重复调用）"""
        try:
            self.scheduler.remove_job(job_id)
        except JobLookupError:
            return
        logger.debug("[SCHEDULER] Job removed: %s", job_id)

    def has_job(self, job_id: str) -> bool:
        return self.scheduler.get_job(job_id) is not None

    def start(self):
        """启动调度器（需在事件循环内调用）"""
        if getattr(self.scheduler, "running", False):
            logger.info("[SCHEDULER] Scheduler already running")
            return
        self.scheduler.start()
        logger.info("[SCHEDULER] Scheduler started")

    def shutdown(self):
        """关闭调度器"""
        if not getattr(self.scheduler, "running", False):
            return
        self.scheduler.shutdown(wait=False)
        logger.info("[SCHEDULER] Scheduler stopped")


# 全局调度器实例
scheduler = AutosaveScheduler()
