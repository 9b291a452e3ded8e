"""
Task Planner: decomposes a legal question into retrieval sub-tasks.

One completion call with a fixed prompt. Any failure degrades to a single
task holding the original question, so the agent loop always starts.
"""

import logging

from .errors import StatuteRAGError
from .llm_client import CompletionClient
from .parsing import Fallback, parse_task_list
from .prompts import render_planner_prompt

logger = logging.getLogger(__name__)


def clamp_tasks(tasks: list[str], max_tasks: int, source: str) -> list[str]:
    """Truncate a task list to max_tasks (<= 0 disables the clamp)."""
    if max_tasks > 0 and len(tasks) > max_tasks:
        logger.warning(f"{source} returned {len(tasks)} tasks, keeping the first {max_tasks}")
        return tasks[:max_tasks]
    return tasks


class TaskPlanner:
    """Turns a user question into an ordered list of retrieval queries."""

    def __init__(self, completion_client: CompletionClient, max_tasks: int = 5):
        self.llm = completion_client
        self.max_tasks = max_tasks

    def plan(self, user_query: str) -> list[str]:
        """
        Decompose `user_query` into retrieval tasks.

        Returns:
            1..max_tasks task strings; `[user_query]` on any failure
        """
        prompt = render_planner_prompt(user_query)

        try:
            raw = self.llm.complete(prompt)
        except StatuteRAGError as e:
            logger.warning(f"Planner LLM call failed: {e}. Falling back to the original query.")
            return [user_query]

        result = parse_task_list(raw)
        if isinstance(result, Fallback):
            logger.warning(f"Planner output unusable ({result.reason}). Falling back to the original query.")
            return [user_query]

        tasks = clamp_tasks(result.value, self.max_tasks, "Planner")
        logger.info(f"Planned {len(tasks)} retrieval tasks: {tasks}")
        return tasks
