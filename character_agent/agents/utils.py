"""Agent 工具函数。"""
from __future__ import annotations

import json
import re
from typing import Any

_CLOSERS = {"{": "}", "[": "]"}


def strip_code_fence(text: str) -> str:
    """移除 LLM 响应外层的 markdown 代码块标记"""
    text = text.strip()
    if not text.startswith("```"):
        return text
    lines = text.split("\n")[1:]
    if lines and lines[-1].strip() == "```":
        lines = lines[:-1]
    return "\n".join(lines).strip()


def extract_json(text: str) -> dict[str, Any] | list[Any]:
    """从 LLM 响应中提取 JSON 对象或数组，支持不完整 JSON 的修复。"""
    text = strip_code_fence(text)

    try:
        data = json.loads(text)
        if isinstance(data, (dict, list)):
            return data
    except json.JSONDecodeError:
        pass

    starts = [i for i in _json_starts(text) if i != -1]
    if not starts:
        raise ValueError("No JSON object found in LLM response")

    candidates: list[str] = []
    for start in starts:
        # 先按截断处理整个尾部，再尝试到最后一个闭合括号为止的片段
        candidates.append(text[start:])
        end = text.rfind(_CLOSERS[text[start]])
        if end > start and end + 1 < len(text):
            candidates.append(text[start : end + 1])

    for json_text in candidates:
        for fix_func in (
            lambda x: x,
            _fix_common_json_errors,
            _try_fix_incomplete_json,
            lambda x: _try_fix_incomplete_json(_fix_common_json_errors(x)),
        ):
            try:
                data = json.loads(fix_func(json_text))
                if isinstance(data, (dict, list)):
                    return data
            except (json.JSONDecodeError, ValueError):
                continue

    raise ValueError(f"Unable to parse JSON from LLM response: {candidates[0][:200]}...")


def _json_starts(text: str) -> tuple[int, int]:
    """候选起点的尝试顺序：优先对象；`[` 在前且确实开启数组（对象数组或空数组）时优先数组"""
    obj = text.find("{")
    arr = text.find("[")
    if arr != -1 and (obj == -1 or (arr < obj and text[arr + 1 :].lstrip().startswith(("{", "]")))):
        return arr, obj
    return obj, arr


def _fix_common_json_errors(text: str) -> str:
    """修复 LLM 生成 JSON 的常见错误。"""
    # 注释
    text = re.sub(r"//[^\n]*", "", text)
    text = re.sub(r"/\*.*?\*/", "", text, flags=re.DOTALL)

    # 尾随逗号
    text = re.sub(r",\s*([\]}])", r"\1", text)

    # 数组元素 / 对象属性之间缺少逗号
    text = re.sub(r"}\s*\n\s*{", "},\n{", text)
    text = re.sub(r'"\s*\n\s*"', '",\n"', text)
    text = re.sub(r'(true|false|null|\d)\s*\n\s*"', r'\1,\n"', text)
    return text


def _try_fix_incomplete_json(text: str) -> str:
    """闭合被截断的字符串与括号（按嵌套顺序）。"""
    stack: list[str] = []
    in_string = False
    escape_next = False

    for char in text:
        if escape_next:
            escape_next = False
            continue
        if char == "\\":
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char in _CLOSERS:
            stack.append(_CLOSERS[char])
        elif stack and char == stack[-1]:
            stack.pop()

    if in_string:
        text += '"'
    text = re.sub(r",\s*$", "", text)
    return text + "".join(reversed(stack))
