from __future__ import annotations

import json
import logging
from typing import Any

from character_agent.agents.base import ExtractorProtocol, StepStoreProtocol
from character_agent.exceptions import (
    EmptyInputError,
    ExtractionError,
    MalformedNotificationError,
    PersistenceError,
)
from character_agent.schemas.character import CharacterRecord
from character_agent.schemas.step import LogEntry, Notification, Step, StepStatus, TaskLogLevel

logger = logging.getLogger(__name__)

_LOG_LEVELS: dict[str, int] = {
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "debug": logging.DEBUG,
    "info": logging.INFO,
}


def serialize_characters(records: list[CharacterRecord]) -> str:
    """step.output 的编码：角色对象组成的 JSON 数组（保持提取顺序）"""
    return json.dumps([r.model_dump(mode="json") for r in records], ensure_ascii=False)


class StepProcessor:
    """把一个 step-updated 通知变成至多一次的步骤终态更新。

    每次调用相互独立、不保存状态；所有单个通知内的错误都在这里消化，
    不会传播到事件循环。
    """

    def __init__(self, store: StepStoreProtocol, extractor: ExtractorProtocol):
        self.store = store
        self.extractor = extractor

    async def handle_notification(self, raw: Any) -> None:
        try:
            notification = Notification.from_raw(raw)
        except MalformedNotificationError as exc:
            logger.error("Discarding malformed notification: %s", exc)
            return
        logger.info("Received event: %s", notification.model_dump(exclude_none=True))

        try:
            step = await self.store.get_step(notification.step_id)
        except Exception as exc:
            # 步骤当前状态未知，不能安全地更新
            logger.error("Error fetching step %s: %s", notification.step_id, exc)
            return
        logger.info("Processing Step %s - %s [%s]", step.task_id, step.step_id, step.status_label())

        if not step.is_pending:
            logger.warning("Step %s is not pending. Skipping...", step.step_id)
            return

        await self._log(step, "info", "Starting character extraction...")

        try:
            await self._process(step)
        except Exception as exc:
            await self._log(
                step,
                "error",
                f"Error during character extraction: {exc}",
                task_status=StepStatus.FAILED,
            )
            if isinstance(exc, PersistenceError):
                await self._mark_failed(step)

    async def _process(self, step: Step) -> None:
        script = (step.input_query or "").strip()
        if not script:
            raise EmptyInputError("No script provided for character extraction.")

        try:
            records = await self.extractor.extract_characters(script)
        except ExtractionError:
            raise
        except Exception as exc:
            raise ExtractionError(str(exc)) from exc

        output = serialize_characters(records)
        logger.info("Extracted %d characters for step %s: %s", len(records), step.step_id, output)

        result = await self.store.update_step(
            step.did,
            {
                **step.model_dump(mode="json"),
                "step_status": StepStatus.COMPLETED.value,
                "is_last": True,
                "output": output,
            },
        )
        if not result.ok:
            raise PersistenceError(
                f"Error updating step {step.step_id} - {json.dumps(result.data, default=str)}",
                details={"status": result.status},
            )

        await self._log(
            step,
            "info",
            "Character extraction completed.",
            task_status=StepStatus.COMPLETED,
        )

    async def _mark_failed(self, step: Step) -> None:
        """持久化失败后尽力把步骤标记为 Failed；仍失败时记录步骤可能停留在 Pending"""
        update = {
            **step.model_dump(mode="json"),
            "step_status": StepStatus.FAILED.value,
            "is_last": True,
        }
        try:
            result = await self.store.update_step(step.did, update)
        except Exception as exc:
            logger.warning("Step %s could not be marked Failed (%s); record may still be Pending", step.step_id, exc)
            return
        if not result.ok:
            logger.warning(
                "Step %s could not be marked Failed (status %s); record may still be Pending",
                step.step_id,
                result.status,
            )

    async def _log(
        self,
        step: Step,
        level: TaskLogLevel,
        message: str,
        *,
        task_status: StepStatus | None = None,
    ) -> None:
        """本地记录并转发到协调网络；转发失败不中断处理"""
        logger.log(_LOG_LEVELS[level], "[%s/%s] %s", step.task_id, step.step_id, message)
        entry = LogEntry(
            task_id=step.task_id,
            step_id=step.step_id,
            level=level,
            message=message,
            task_status=task_status,
        )
        try:
            await self.store.log_task(entry)
        except Exception as exc:
            logger.warning("Failed to forward task log for %s: %s", step.task_id, exc)
