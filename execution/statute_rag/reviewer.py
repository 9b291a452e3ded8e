"""
Retrieval Reviewer: judges each task's evidence and rewrites the task queue.

The reviewer's `new_todo_list` replaces the remaining queue wholesale. When
the model is unreachable or its answer cannot be parsed, the queue is left
unchanged and a fixed thought is recorded instead.
"""

import json
import logging
from dataclasses import dataclass

from .errors import StatuteRAGError
from .llm_client import CompletionClient
from .parsing import Fallback, parse_review
from .planner import clamp_tasks
from .prompts import render_reviewer_prompt

logger = logging.getLogger(__name__)

PARSE_FAILED_THOUGHT = "解析思考结果失败，继续执行原计划。"
CALL_FAILED_THOUGHT = "LLM 调用失败，跳过此步分析。"


@dataclass(frozen=True)
class ReviewOutcome:
    """Reviewer verdict for one completed task."""
    thought: str
    new_todo_list: list[str]
    # False when a fallback left the queue untouched
    applied: bool


class RetrievalReviewer:
    """Evaluates retrieval evidence and decides the next tasks."""

    def __init__(self, completion_client: CompletionClient, max_tasks: int = 5):
        self.llm = completion_client
        self.max_tasks = max_tasks

    def review(
        self,
        user_query: str,
        current_task: str,
        result_text: str,
        remaining_tasks: list[str],
    ) -> ReviewOutcome:
        prompt = render_reviewer_prompt(
            user_query=user_query,
            current_task=current_task,
            search_results=result_text,
            remaining_todo_json=json.dumps(remaining_tasks, ensure_ascii=False),
        )

        try:
            raw = self.llm.complete(prompt)
        except StatuteRAGError as e:
            logger.warning(f"Reviewer LLM call failed for '{current_task}': {e}")
            return ReviewOutcome(CALL_FAILED_THOUGHT, list(remaining_tasks), applied=False)

        result = parse_review(raw)
        if isinstance(result, Fallback):
            logger.warning(f"Reviewer output unusable for '{current_task}': {result.reason}")
            return ReviewOutcome(PARSE_FAILED_THOUGHT, list(remaining_tasks), applied=False)

        decision = result.value
        new_tasks = clamp_tasks(decision.new_todo_list, self.max_tasks, "Reviewer")
        logger.info(f"Reviewer: {decision.thought} -> {len(new_tasks)} tasks pending")
        return ReviewOutcome(decision.thought, new_tasks, applied=True)
