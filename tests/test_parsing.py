"""
Tests for execution/statute_rag/parsing.py and prompts.py

Covers: code-fence stripping, planner and reviewer output validation,
        prompt rendering.
"""

import json

import pytest


# ---------------------------------------------------------------------------
# strip_code_fences
# ---------------------------------------------------------------------------

class TestStripCodeFences:

    @pytest.mark.parametrize("raw", [
        '["a"]',
        '```json\n["a"]\n```',
        '```\n["a"]\n```',
        '  ```json["a"]```  ',
    ])
    def test_variants(self, raw):
        from execution.statute_rag.parsing import strip_code_fences
        assert strip_code_fences(raw) == '["a"]'


# ---------------------------------------------------------------------------
# parse_task_list
# ---------------------------------------------------------------------------

class TestParseTaskList:

    def test_plain_array(self):
        from execution.statute_rag.parsing import Parsed, parse_task_list
        result = parse_task_list('["民事诉讼时效期间"]')
        assert isinstance(result, Parsed)
        assert result.ok
        assert result.value == ["民事诉讼时效期间"]

    def test_fenced_array(self):
        from execution.statute_rag.parsing import parse_task_list
        result = parse_task_list('```json\n["房屋买卖合同违约责任", "房屋买卖合同解除条件"]\n```')
        assert result.value == ["房屋买卖合同违约责任", "房屋买卖合同解除条件"]

    @pytest.mark.parametrize("raw", [
        "我认为应该检索诉讼时效",
        '{"tasks": ["a"]}',
        '["a", 1]',
        "[]",
        "",
    ])
    def test_fallbacks(self, raw):
        from execution.statute_rag.parsing import Fallback, parse_task_list
        result = parse_task_list(raw)
        assert isinstance(result, Fallback)
        assert not result.ok
        assert result.reason


# ---------------------------------------------------------------------------
# parse_review
# ---------------------------------------------------------------------------

class TestParseReview:

    def test_valid(self):
        from execution.statute_rag.parsing import parse_review
        raw = json.dumps({"thought": "已找到民法典第188条", "new_todo_list": []}, ensure_ascii=False)
        result = parse_review(raw)
        assert result.ok
        assert result.value.thought == "已找到民法典第188条"
        assert result.value.new_todo_list == []

    def test_extra_keys_ignored(self):
        from execution.statute_rag.parsing import parse_review
        raw = '```json\n{"thought": "补充检索", "new_todo_list": ["诉讼时效中断"], "confidence": 0.9}\n```'
        result = parse_review(raw)
        assert result.value.new_todo_list == ["诉讼时效中断"]

    @pytest.mark.parametrize("raw", [
        "not json",
        '["a"]',
        '{"new_todo_list": []}',
        '{"thought": 3, "new_todo_list": []}',
        '{"thought": "x"}',
        '{"thought": "x", "new_todo_list": "a"}',
        '{"thought": "x", "new_todo_list": [null]}',
    ])
    def test_fallbacks(self, raw):
        from execution.statute_rag.parsing import Fallback, parse_review
        assert isinstance(parse_review(raw), Fallback)


# ---------------------------------------------------------------------------
# Prompt rendering
# ---------------------------------------------------------------------------

class TestPrompts:

    def test_planner_prompt_contains_question(self):
        from execution.statute_rag.prompts import render_planner_prompt
        prompt = render_planner_prompt("诉讼时效是多久")
        assert "诉讼时效是多久" in prompt
        assert "{user_query}" not in prompt

    def test_reviewer_prompt_substitutes_everything(self):
        from execution.statute_rag.prompts import render_reviewer_prompt
        prompt = render_reviewer_prompt(
            user_query="诉讼时效是多久",
            current_task="民事诉讼时效期间",
            search_results="法规：《中华人民共和国民法典》第一百八十八条\n内容：……\n\n",
            remaining_todo_json='["诉讼时效中断"]',
        )
        for placeholder in ("{user_query}", "{current_task}", "{search_results}", "{remaining_todo_list}"):
            assert placeholder not in prompt
        assert "民事诉讼时效期间" in prompt
        assert '["诉讼时效中断"]' in prompt
