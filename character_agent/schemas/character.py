from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

# 输出到 step.output 时的字段顺序
CHARACTER_FIELDS: tuple[str, ...] = (
    "name",
    "age",
    "gender",
    "species",
    "physical_description",
    "attire",
    "personality_traits",
    "role",
    "scene_description",
    "additional_notes",
)


class CharacterRecord(BaseModel):
    """单个角色的描述（全部为自由文本，可缺省）"""

    model_config = ConfigDict(extra="ignore")

    name: str | None = None
    age: str | None = None
    gender: str | None = None
    species: str | None = None
    physical_description: str | None = None
    attire: str | None = None
    personality_traits: str | None = None
    role: str | None = None
    scene_description: str | None = None
    additional_notes: str | None = None

    @field_validator(*CHARACTER_FIELDS, mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        # LLM 偶尔会把特征输出为列表或数字
        if isinstance(value, (list, tuple)):
            return ", ".join(str(v).strip() for v in value if str(v).strip())
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value
