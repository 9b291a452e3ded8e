"""
Soft-fail parsing of LLM output.

Parsers never raise: they return Parsed(value) or Fallback(reason) and the
caller branches on the tag.
"""

import json
from dataclasses import dataclass
from typing import Any, Union


@dataclass(frozen=True)
class Parsed:
    value: Any
    ok = True


@dataclass(frozen=True)
class Fallback:
    reason: str
    ok = False


ParseResult = Union[Parsed, Fallback]


@dataclass(frozen=True)
class ReviewDecision:
    """Validated reviewer output."""
    thought: str
    new_todo_list: list[str]


def strip_code_fences(text: str) -> str:
    """Remove a surrounding Markdown code fence (``` or ```json) from model output."""
    s = text.strip()
    if s.startswith("```json"):
        s = s[len("```json"):]
    elif s.startswith("```"):
        s = s[3:]
    if s.endswith("```"):
        s = s[:-3]
    return s.strip()


def _load_json(text: str) -> ParseResult:
    cleaned = strip_code_fences(text)
    try:
        return Parsed(json.loads(cleaned))
    except ValueError as e:
        return Fallback(f"invalid JSON: {e}")


def _is_string_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) for item in value)


def parse_task_list(text: str) -> ParseResult:
    """Parse a planner response: a non-empty JSON array of strings."""
    result = _load_json(text)
    if isinstance(result, Fallback):
        return result

    tasks = result.value
    if not _is_string_list(tasks):
        return Fallback(f"expected a JSON array of strings, got {type(tasks).__name__}")
    if not tasks:
        return Fallback("empty task list")
    return Parsed(tasks)


def parse_review(text: str) -> ParseResult:
    """Parse a reviewer response: {"thought": str, "new_todo_list": [str, ...]}."""
    result = _load_json(text)
    if isinstance(result, Fallback):
        return result

    obj = result.value
    if not isinstance(obj, dict):
        return Fallback(f"expected a JSON object, got {type(obj).__name__}")
    if not isinstance(obj.get("thought"), str):
        return Fallback("missing or non-string 'thought'")
    if not _is_string_list(obj.get("new_todo_list")):
        return Fallback("missing or invalid 'new_todo_list'")

    return Parsed(ReviewDecision(thought=obj["thought"], new_todo_list=list(obj["new_todo_list"])))
