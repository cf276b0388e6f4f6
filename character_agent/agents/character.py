from __future__ import annotations

import asyncio
import logging
from typing import Any

from pydantic import ValidationError

from character_agent.agents.prompts.character import SYSTEM_PROMPT, USER_PROMPT_TEMPLATE
from character_agent.agents.utils import extract_json
from character_agent.config import Settings
from character_agent.exceptions import ExtractionError
from character_agent.schemas.character import CharacterRecord
from character_agent.services.llm import LLMService

logger = logging.getLogger(__name__)


class CharacterExtractor:
    """从剧本中提取角色描述（单次 LLM 调用 + JSON 解析）"""

    def __init__(self, llm: LLMService, settings: Settings):
        self.llm = llm
        self.settings = settings

    def _parse_characters(self, text: str) -> list[CharacterRecord]:
        try:
            data: Any = extract_json(text)
        except ValueError as exc:
            raise ExtractionError(f"Malformed extraction output: {exc}") from exc

        # 兼容直接返回数组的情况
        raw_characters = data if isinstance(data, list) else data.get("characters")
        if not isinstance(raw_characters, list):
            raise ExtractionError("Malformed extraction output: missing `characters` list")

        records: list[CharacterRecord] = []
        for idx, item in enumerate(raw_characters):
            if not isinstance(item, dict):
                raise ExtractionError(f"Malformed extraction output: character #{idx} is not an object")
            try:
                records.append(CharacterRecord.model_validate(item))
            except ValidationError as exc:
                raise ExtractionError(f"Malformed extraction output: character #{idx}: {exc}") from exc
        return records

    async def _call_llm(self, script: str) -> str:
        resp = await self.llm.generate(
            messages=[{"role": "user", "content": USER_PROMPT_TEMPLATE.format(script=script)}],
            system=SYSTEM_PROMPT,
            max_tokens=self.settings.llm_max_tokens,
        )
        if resp.stop_reason == "max_tokens":
            logger.warning("Extraction output hit max_tokens; attempting to repair truncated JSON")
        return resp.text

    async def extract_characters(self, script: str) -> list[CharacterRecord]:
        """提取角色列表。

        任何失败（LLM 服务错误、输出无法解析、超时）都抛出 ExtractionError。
        """
        timeout_s = self.settings.extraction_timeout_s
        try:
            if timeout_s is not None:
                text = await asyncio.wait_for(self._call_llm(script), timeout=timeout_s)
            else:
                text = await self._call_llm(script)
        except asyncio.TimeoutError as exc:
            if timeout_s is not None:
                raise ExtractionError(f"Character extraction timed out after {timeout_s}s") from exc
            # 未设置整体超时：来自底层调用自身的超时
            raise ExtractionError(f"Language model call timed out: {str(exc) or type(exc).__name__}") from exc
        except Exception as exc:
            raise ExtractionError(f"Language model call failed: {exc}") from exc

        return self._parse_characters(text.strip())
