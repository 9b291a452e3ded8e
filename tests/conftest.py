"""
Shared fixtures and test utilities for Statute RAG tests.

Provides mock services, a small statute corpus, and reusable fixtures so
that all tests can run without model endpoints, LanceDB, or network access.
"""

import sys
import hashlib
import sqlite3
from pathlib import Path

import numpy as np
import pytest
from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Path setup - ensure the execution package is importable
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

load_dotenv(PROJECT_ROOT / ".env")

# ---------------------------------------------------------------------------
# Sample corpus rows (id, content, law_name, category, region,
#                     publish_date, part, chapter, article_number)
# ---------------------------------------------------------------------------
SAMPLE_CHUNKS = [
    (
        "c1",
        "向人民法院请求保护民事权利的诉讼时效期间为三年。法律另有规定的，依照其规定。",
        "中华人民共和国民法典", "法律", "全国", "2020-05-28",
        "第一编 总则", "第九章 诉讼时效", "第一百八十八条",
    ),
    (
        "c2",
        "当事人约定同一债务分期履行的，诉讼时效期间自最后一期履行期限届满之日起计算。",
        "中华人民共和国民法典", "法律", "全国", "2020-05-28",
        "第一编 总则", "第九章 诉讼时效", "第一百八十九条",
    ),
    (
        "c3",
        "当事人可以对债权请求权提出诉讼时效抗辩。",
        "最高人民法院关于审理民事案件适用诉讼时效制度若干问题的规定", "司法解释", "全国", "2020-12-29",
        None, None, "第一条",
    ),
    (
        "c4",
        "用人单位与劳动者订立劳动合同，应当遵循合法、公平、平等自愿的原则。",
        "上海市劳动合同条例", "地方法规", "上海市", "2001-11-15",
        None, "第二章 劳动合同的订立", "第十条",
    ),
    (
        "c5",
        "劳动合同期限届满，劳动合同即行终止。",
        "北京市劳动合同规定", "地方法规", "北京市", "2001-12-13",
        None, None, "第五条",
    ),
    (
        "c6",
        "用人单位应当依法建立职工名册备查。",
        "中华人民共和国劳动合同法实施条例", "行政法规", "全国", "2008-09-18",
        None, "第二章 劳动合同的订立", "第八条",
    ),
]

SAMPLE_FULL_TEXTS = [
    ("中华人民共和国民法典", "全国", "法律", "第一编 总则\n第一条 为了保护民事主体的合法权益……"),
    ("最高人民法院关于审理民事案件适用诉讼时效制度若干问题的规定", "全国", "司法解释", "第一条 当事人可以对债权请求权提出诉讼时效抗辩。"),
    ("上海市劳动合同条例", "上海市", "地方法规", "第一条 为了规范劳动合同……"),
    ("中华人民共和国劳动合同法", "全国", "法律", "第一条 为了完善劳动合同制度……"),
    ("中华人民共和国劳动合同法实施条例", "全国", "行政法规", "第一条 为了贯彻实施《中华人民共和国劳动合同法》……"),
]


def make_fragment(chunk_id="c1", distance=0.5, **overrides):
    """Build a StatuteFragment from SAMPLE_CHUNKS (or defaults) with a distance."""
    from execution.statute_rag.vector_store import StatuteFragment, CHUNK_COLUMNS

    rows = {row[0]: dict(zip(CHUNK_COLUMNS, row)) for row in SAMPLE_CHUNKS}
    row = rows.get(chunk_id, {
        "id": chunk_id, "content": f"内容{chunk_id}", "law_name": "测试法",
        "category": "法律", "region": "全国", "publish_date": "",
        "part": "", "chapter": "", "article_number": "第一条",
    })
    fragment = StatuteFragment.from_row({**row, **overrides})
    fragment.distance = distance
    return fragment


# ---------------------------------------------------------------------------
# Temporary sqlite content.db
# ---------------------------------------------------------------------------

def build_content_db(path: Path, chunks=SAMPLE_CHUNKS, full_texts=SAMPLE_FULL_TEXTS) -> Path:
    conn = sqlite3.connect(path)
    conn.execute(
        "CREATE TABLE chunks (id TEXT PRIMARY KEY, content TEXT, law_name TEXT, "
        "category TEXT, region TEXT, publish_date TEXT, part TEXT, chapter TEXT, "
        "article_number TEXT)"
    )
    conn.execute(
        "CREATE TABLE full_texts (law_name TEXT PRIMARY KEY, region TEXT, "
        "category TEXT, full_text TEXT)"
    )
    conn.executemany("INSERT INTO chunks VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)", chunks)
    conn.executemany("INSERT INTO full_texts VALUES (?, ?, ?, ?)", full_texts)
    conn.commit()
    conn.close()
    return path


@pytest.fixture
def data_dir(tmp_path):
    """A data directory holding content.db (no vector index)."""
    build_content_db(tmp_path / "content.db")
    return tmp_path


@pytest.fixture
def metadata_store(data_dir):
    from execution.statute_rag.vector_store import MetadataStore
    return MetadataStore(sqlite_path=data_dir / "content.db")


# ---------------------------------------------------------------------------
# Mock embedding service
# ---------------------------------------------------------------------------

class MockEmbeddingService:
    """Deterministic mock embedding service -- never calls external APIs."""

    def __init__(self, dimensions=8, error=None):
        self._dimensions = dimensions
        self._error = error
        self.queries = []

    def embed_query(self, query):
        self.queries.append(query)
        if self._error is not None:
            raise self._error
        h = hashlib.sha256(query.encode()).hexdigest()
        seed = int(h[:8], 16)
        return np.asarray(
            [((seed + i) % 1000) / 1000.0 for i in range(self._dimensions)],
            dtype=np.float32,
        )


@pytest.fixture
def mock_embedding_service():
    return MockEmbeddingService()


# ---------------------------------------------------------------------------
# Fake vector index (no LanceDB needed)
# ---------------------------------------------------------------------------

class FakeVectorIndex:
    """Returns scripted (chunk_id, distance) hits in the given order."""

    def __init__(self, hits=None, error=None, present=True, db_path="data/law_db.lancedb"):
        self.hits = list(hits or [])
        self.error = error
        self.present = present
        self.db_path = db_path
        self.limits = []

    def exists(self):
        return self.present

    def search(self, vector, limit):
        self.limits.append(limit)
        if self.error is not None:
            raise self.error
        return self.hits[:limit]


@pytest.fixture
def fake_vector_index():
    return FakeVectorIndex(hits=[
        ("c1", 0.31), ("c4", 0.42), ("c3", 0.55), ("c5", 0.61), ("c2", 0.78), ("c6", 0.93),
    ])


# ---------------------------------------------------------------------------
# Scripted chat-completion client
# ---------------------------------------------------------------------------

class ScriptedCompletionClient:
    """
    Answers complete() calls from a script of strings or exceptions.

    Once the script runs out every call raises TransportError.
    """

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.prompts = []

    def complete(self, prompt, model=None, temperature=0.1):
        from execution.statute_rag.errors import TransportError

        self.prompts.append(prompt)
        if not self.responses:
            raise TransportError("script exhausted")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


# ---------------------------------------------------------------------------
# Fake retriever for agent-loop tests
# ---------------------------------------------------------------------------

class FakeRetriever:
    """Maps task strings to fragment lists (or exceptions); records calls."""

    def __init__(self, results=None, default=None):
        self.results = dict(results or {})
        self.default = default if isinstance(default, Exception) else list(default or [])
        self.calls = []

    def retrieve(self, query, region_filter=None, top_k=None):
        self.calls.append((query, region_filter, top_k))
        outcome = self.results.get(query, self.default)
        if isinstance(outcome, Exception):
            raise outcome
        return list(outcome)
