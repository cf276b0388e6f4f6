"""任务协调网络客户端：步骤读写、任务日志与事件订阅"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable

import httpx
from pydantic import ValidationError
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from character_agent.config import Settings
from character_agent.exceptions import (
    AuthenticationError,
    PersistenceError,
    StepFetchError,
    SubscriptionError,
)
from character_agent.schemas.step import LogEntry, Step, StepUpdateResult, SubscriptionOptions

logger = logging.getLogger(__name__)

NotificationCallback = Callable[[Any], Awaitable[None]]

PROFILE_PATH = "/api/v1/auth/profile"
STEP_PATH = "/api/v1/agents/steps/{step_id}"
UPDATE_STEP_PATH = "/api/v1/agents/{did}/tasks/{task_id}/step/{step_id}"
TASK_LOG_PATH = "/api/v1/agents/tasks/{task_id}/logs"


class StepStoreClient:
    """协调网络的 REST + WebSocket 客户端。

    一个进程只构造一次，各通知处理共享使用；除连接本身外不保存每次调用的状态。
    """

    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings
        self._http = httpx.AsyncClient(
            base_url=settings.backend_url(),
            headers=settings.nvm_headers(),
            timeout=settings.request_timeout_s,
            transport=transport,
        )
        self._logged_in = False
        self._ws: ClientConnection | None = None
        self._reader: asyncio.Task | None = None
        self._closing = False

    @property
    def is_logged_in(self) -> bool:
        return self._logged_in

    async def connect(self) -> None:
        """校验 API Key；失败时抛出 AuthenticationError"""
        if not self.settings.nvm_api_key:
            raise AuthenticationError("NVM API key is not configured")
        try:
            res = await self._http.get(PROFILE_PATH)
        except httpx.HTTPError as exc:
            raise AuthenticationError(f"Unable to reach {self.settings.backend_url()}: {exc}") from exc
        if res.status_code != 200:
            raise AuthenticationError(
                f"Login rejected by {self.settings.nvm_environment} network",
                details={"status": res.status_code},
            )
        self._logged_in = True

    async def get_step(self, step_id: str) -> Step:
        try:
            res = await self._http.get(STEP_PATH.format(step_id=step_id))
            res.raise_for_status()
            return Step.model_validate(res.json())
        except httpx.HTTPStatusError as exc:
            raise StepFetchError(
                f"Step {step_id} could not be fetched (HTTP {exc.response.status_code})",
                details={"step_id": step_id},
            ) from exc
        except httpx.HTTPError as exc:
            raise StepFetchError(f"Step {step_id} could not be fetched: {exc}", details={"step_id": step_id}) from exc
        except (ValueError, ValidationError) as exc:
            raise StepFetchError(f"Step {step_id} has an invalid payload: {exc}", details={"step_id": step_id}) from exc

    async def update_step(self, did: str, step: dict[str, Any]) -> StepUpdateResult:
        """回写步骤。HTTP 响应总是以 StepUpdateResult 返回，由调用方判断状态码"""
        url = UPDATE_STEP_PATH.format(did=did, task_id=step.get("task_id"), step_id=step.get("step_id"))
        try:
            res = await self._http.put(url, json=step)
        except httpx.HTTPError as exc:
            raise PersistenceError(f"Update of step {step.get('step_id')} failed: {exc}") from exc
        try:
            data: Any = res.json()
        except ValueError:
            data = res.text
        return StepUpdateResult(status=res.status_code, data=data)

    async def log_task(self, entry: LogEntry) -> None:
        res = await self._http.post(TASK_LOG_PATH.format(task_id=entry.task_id), json=entry.to_payload())
        res.raise_for_status()

    def _join_frame(self, options: SubscriptionOptions) -> str:
        return json.dumps({"event": "_join-rooms", "data": options.to_payload()})

    def _connect_ws(self) -> connect:
        return connect(self.settings.websocket_url(), additional_headers=self.settings.nvm_headers())

    async def subscribe(self, callback: NotificationCallback, options: SubscriptionOptions) -> None:
        """建立事件订阅；之后每个匹配的事件调用一次 callback(raw)

        首次连接失败抛出 SubscriptionError；之后连接断开会自动重连并重新加入房间。
        """
        if self._reader is not None:
            raise SubscriptionError("Already subscribed")
        self._closing = False
        try:
            self._ws = await self._connect_ws()
            await self._ws.send(self._join_frame(options))
        except (OSError, WebSocketException) as exc:
            self._ws = None
            raise SubscriptionError(f"Unable to subscribe to {self.settings.websocket_url()}: {exc}") from exc

        self._reader = asyncio.create_task(self._read_events(self._ws, callback, options))

    async def _read_events(
        self,
        ws: ClientConnection,
        callback: NotificationCallback,
        options: SubscriptionOptions,
    ) -> None:
        event_types = set(options.subscribe_event_types)
        try:
            await self._consume(ws, callback, event_types)
        except ConnectionClosed as exc:
            logger.warning("Event channel closed: %s", exc)

        # websockets 的重连迭代器：连接断开后带退避地重新连接
        try:
            async for ws in self._connect_ws():
                if self._closing:
                    await ws.close()
                    break
                self._ws = ws
                logger.info("Reconnected to event channel, rejoining rooms")
                try:
                    await ws.send(self._join_frame(options))
                    await self._consume(ws, callback, event_types)
                except ConnectionClosed as exc:
                    logger.warning("Event channel closed: %s", exc)
                    continue
                logger.warning("Event channel closed by server, reconnecting")
        except Exception as exc:
            # 不可重试的错误（例如鉴权被拒），订阅结束
            logger.error("Event channel lost: %s", exc)

    async def _consume(self, ws: ClientConnection, callback: NotificationCallback, event_types: set[str]) -> None:
        async for frame in ws:
            try:
                message = json.loads(frame)
            except json.JSONDecodeError:
                logger.warning("Ignoring non-JSON frame from event channel")
                continue
            if not isinstance(message, dict) or message.get("event") not in event_types:
                continue
            try:
                await callback(message.get("data"))
            except Exception:
                logger.exception("Notification callback failed")

    async def wait_closed(self) -> None:
        """等待事件订阅结束（无法重连或 disconnect）"""
        if self._reader is not None:
            await asyncio.gather(self._reader, return_exceptions=True)

    async def disconnect(self) -> None:
        self._closing = True
        if self._reader is not None:
            if not self._reader.done():
                self._reader.cancel()
            await asyncio.gather(self._reader, return_exceptions=True)
            self._reader = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        await self._http.aclose()
        self._logged_in = False
