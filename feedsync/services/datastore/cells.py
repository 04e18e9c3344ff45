from __future__ import annotations

from typing import Any, Mapping


def _blank(value: Any) -> bool:
    return not value or (isinstance(value, str) and not value.strip())


def _is_segment_empty(segment: Mapping[str, Any]) -> bool | None:
    if "link" in segment:
        return _blank(segment["link"])
    if "text" in segment:
        return _blank(segment["text"])
    return None


def is_cell_value_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple)):
        if not value:
            return True
        first = value[0]
        if isinstance(first, Mapping):
            verdict = _is_segment_empty(first)
            if verdict is not None:
                return verdict
        return False
    if isinstance(value, Mapping):
        verdict = _is_segment_empty(value)
        if verdict is not None:
            return verdict
    return False


def is_record_empty(fields: Mapping[str, Any] | None) -> bool:
    if not fields:
        return True
    return all(is_cell_value_empty(value) for value in fields.values())


def extract_text_from_cell(value: Any) -> str:
    if value is None or value is False or (not isinstance(value, (list, tuple, Mapping)) and not value):
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true"
    if isinstance(value, (int, float)):
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value)
    if isinstance(value, (list, tuple)):
        if not value:
            return ""
        first = value[0]
        if isinstance(first, Mapping):
            if isinstance(first.get("text"), str):
                return first["text"]
            if isinstance(first.get("link"), str):
                return first["link"]
        return str(first)
    if isinstance(value, Mapping):
        return str(value.get("text") or value.get("link") or "")
    return ""
