"""
Agent Loop: plan / execute / review over the statute corpus.

State machine:

    PLANNING -> (EXECUTING <-> THINKING)* -> FINISHED

- PLANNING: the planner turns the question into an initial task queue.
- EXECUTING: pop the front task and retrieve for it. Fragments closer than
  RELEVANCE_THRESHOLD become reviewer evidence and, first time seen, part of
  the final result.
- THINKING: the reviewer reads the evidence and may rewrite the queue.
- FINISHED: the queue is empty or the iteration cap is reached.

Every transition emits a full AgentProgressEvent snapshot to the caller's
callback, so a listener that misses one event loses nothing. The iteration
cap counts executed tasks; it is the only termination guarantee against a
reviewer that keeps re-adding work.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .config import resolve_loop_cap
from .errors import NotFoundError, StatuteRAGError
from .planner import TaskPlanner
from .retriever import HybridRetriever
from .reviewer import RetrievalReviewer
from .vector_store import StatuteFragment

logger = logging.getLogger(__name__)

# Event name used on the progress channel
AGENT_UPDATE_EVENT = "agent-update"

# Distance cutoff separating usable evidence from noise-level matches
RELEVANCE_THRESHOLD = 1.2

NO_RESULTS_TEXT = "未找到直接相关法条。"

PLANNING_THOUGHT = "正在拆解法律问题..."
THINKING_THOUGHT = "正在评估检索结果..."
FINISHED_THOUGHT = "所有任务执行完毕，正在生成最终回答..."


class AgentPhase(str, Enum):
    PLANNING = "planning"
    EXECUTING = "executing"
    THINKING = "thinking"
    FINISHED = "finished"


@dataclass(frozen=True)
class CompletedTask:
    """Audit entry appended once per loop iteration."""
    task: str
    thought: str

    def to_dict(self) -> dict:
        return {"task": self.task, "thought": self.thought}


@dataclass(frozen=True)
class AgentProgressEvent:
    """Full snapshot of loop state at one transition."""
    phase: AgentPhase
    todo_list: tuple[str, ...]
    completed_log: tuple[CompletedTask, ...]
    current_task: Optional[str] = None
    thought: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.value,
            "todo_list": list(self.todo_list),
            "completed_log": [entry.to_dict() for entry in self.completed_log],
            "current_task": self.current_task,
            "thought": self.thought,
        }


ProgressCallback = Callable[[AgentProgressEvent], None]


def format_evidence(fragment: StatuteFragment) -> str:
    return f"法规：《{fragment.law_name}》{fragment.article_number}\n内容：{fragment.content}\n\n"


class AgentLoop:
    """
    Runs one user question through the plan/execute/review cycle.

    An AgentLoop instance holds no per-run state; the queue, the completed
    log and the result accumulator live inside run() and are discarded when
    it returns.
    """

    def __init__(
        self,
        retriever: HybridRetriever,
        planner: TaskPlanner,
        reviewer: RetrievalReviewer,
        max_loops: int = 5,
        top_k: Optional[int] = None,
    ):
        self.retriever = retriever
        self.planner = planner
        self.reviewer = reviewer
        self.loop_cap = resolve_loop_cap(max_loops)
        self.top_k = top_k

    def run(
        self,
        user_query: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> list[StatuteFragment]:
        """
        Answer-oriented retrieval for one question.

        Args:
            user_query: The user's legal question
            on_progress: Called synchronously with each progress snapshot

        Returns:
            Deduplicated fragments in first-seen order across all tasks

        Raises:
            NotFoundError: the vector corpus is missing; nothing can be retrieved.
                An aborted run emits no FINISHED event.
        """
        emit = on_progress or (lambda event: None)

        completed_log: list[CompletedTask] = []
        found: list[StatuteFragment] = []
        seen_ids: set[str] = set()

        emit(AgentProgressEvent(AgentPhase.PLANNING, (), (), thought=PLANNING_THOUGHT))
        todo_list = list(self.planner.plan(user_query))

        iterations = 0
        while todo_list and iterations < self.loop_cap:
            iterations += 1
            current_task = todo_list.pop(0)

            emit(AgentProgressEvent(
                AgentPhase.EXECUTING,
                tuple(todo_list),
                tuple(completed_log),
                current_task=current_task,
            ))

            evidence = self._execute_task(current_task, found, seen_ids)

            emit(AgentProgressEvent(
                AgentPhase.THINKING,
                tuple(todo_list),
                tuple(completed_log),
                current_task=current_task,
                thought=THINKING_THOUGHT,
            ))

            outcome = self.reviewer.review(user_query, current_task, evidence, list(todo_list))
            if outcome.applied:
                todo_list = list(outcome.new_todo_list)
            completed_log.append(CompletedTask(current_task, outcome.thought))

        if todo_list:
            logger.info(f"Iteration cap {self.loop_cap} reached with {len(todo_list)} tasks pending")

        emit(AgentProgressEvent(
            AgentPhase.FINISHED,
            (),
            tuple(completed_log),
            thought=FINISHED_THOUGHT,
        ))

        logger.info(f"Agent finished after {iterations} tasks with {len(found)} unique fragments")
        return found

    def _execute_task(
        self,
        task: str,
        found: list[StatuteFragment],
        seen_ids: set[str],
    ) -> str:
        """Retrieve for one task; return the evidence text for the reviewer."""
        try:
            fragments = self.retriever.retrieve(task, region_filter=None, top_k=self.top_k)
        except NotFoundError:
            logger.error(f"Statute corpus unavailable, aborting agent run at task '{task}'")
            raise
        except StatuteRAGError as e:
            logger.warning(f"Retrieval failed for task '{task}': {e}")
            return f"搜索出错: {e}"

        evidence = []
        for fragment in fragments:
            if fragment.distance >= RELEVANCE_THRESHOLD:
                continue
            evidence.append(format_evidence(fragment))
            if fragment.id not in seen_ids:
                seen_ids.add(fragment.id)
                found.append(fragment)

        text = "".join(evidence)
        if not text.strip():
            return NO_RESULTS_TEXT
        return text


# CLI for testing
if __name__ == "__main__":
    import sys
    from dotenv import load_dotenv

    from .config import Settings
    from .services import build_agent

    load_dotenv()
    logging.basicConfig(level=logging.INFO)

    question = " ".join(sys.argv[1:]) or "诉讼时效是多久"

    def print_event(event: AgentProgressEvent) -> None:
        task = f" [{event.current_task}]" if event.current_task else ""
        print(f"-- {event.phase.value}{task} todo={list(event.todo_list)}")
        if event.completed_log and event.phase in (AgentPhase.EXECUTING, AgentPhase.FINISHED):
            print(f"   last thought: {event.completed_log[-1].thought}")

    agent = build_agent(Settings.from_env())
    results = agent.run(question, on_progress=print_event)

    print(f"\n{len(results)} fragments")
    for i, fragment in enumerate(results, 1):
        print(f"{i}. {fragment.citation()} (distance: {fragment.distance:.4f})")
