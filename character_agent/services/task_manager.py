"""任务管理器 - 跟踪正在处理的通知"""
from __future__ import annotations

import asyncio
from typing import Dict, Set


class TaskManager:
    """按 step_id 跟踪进行中的处理任务。

    不取消任务：提取一旦开始就运行到结束。
    """

    def __init__(self) -> None:
        # step_id -> task
        self._tasks: Dict[str, asyncio.Task] = {}
        # 无法解析出 step_id 的通知
        self._anonymous: Set[asyncio.Task] = set()

    def register(self, step_id: str | None, task: asyncio.Task) -> None:
        """注册一个任务，结束后自动移除"""
        if step_id is None:
            self._anonymous.add(task)
            task.add_done_callback(self._anonymous.discard)
            return
        self._tasks[step_id] = task
        task.add_done_callback(lambda t: self._discard(step_id, t))

    def _discard(self, step_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(step_id) is task:
            self._tasks.pop(step_id, None)

    def is_running(self, step_id: str) -> bool:
        """检查该步骤是否有运行中的任务"""
        task = self._tasks.get(step_id)
        return task is not None and not task.done()

    def __len__(self) -> int:
        return sum(1 for t in [*self._tasks.values(), *self._anonymous] if not t.done())

    async def wait_all(self) -> None:
        """等待所有进行中的任务结束"""
        pending = [t for t in [*self._tasks.values(), *self._anonymous] if not t.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
