"""
Corpus stores for statute retrieval.

Two stores back the corpus:
- VectorIndex: LanceDB table (`law_db.lancedb/laws_vectors`) holding one
  embedding per fragment, searched by nearest neighbour. Only `chunk_id`
  and `_distance` are read back.
- MetadataStore: relational `chunks` / `full_texts` tables holding the
  fragment text and its legal metadata. SQLite (`content.db`) by default,
  PostgreSQL when a DSN is configured.

Both are opened per call and hold no long-lived connections, so concurrent
queries can share them freely. This package never writes to either store.
"""

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from .config import Settings
from .errors import NotFoundError, MetadataLookupError, VectorSearchError, DecodeError

try:
    import psycopg2
    import psycopg2.extras
except ImportError:
    psycopg2 = None  # Only needed when a PostgreSQL DSN is configured

DB_ERRORS = (sqlite3.Error,) + ((psycopg2.Error,) if psycopg2 is not None else ())

logger = logging.getLogger(__name__)


# Closed set of statute categories as stored in the corpus
CATEGORY_NATIONAL_STATUTE = "法律"
CATEGORY_JUDICIAL_INTERPRETATION = "司法解释"
CATEGORY_ADMINISTRATIVE_REGULATION = "行政法规"
CATEGORY_LOCAL_REGULATION = "地方法规"
CATEGORY_OTHER = "其他"

CATEGORY_PRIORITY = {
    CATEGORY_NATIONAL_STATUTE: 1,
    CATEGORY_JUDICIAL_INTERPRETATION: 2,
    CATEGORY_ADMINISTRATIVE_REGULATION: 3,
    CATEGORY_LOCAL_REGULATION: 4,
}
UNKNOWN_CATEGORY_PRIORITY = 99

# Upper bound on raw rows read before sorting suggestions
SUGGESTION_SCAN_LIMIT = 200

CHUNK_COLUMNS = (
    "id", "content", "law_name", "category", "region",
    "publish_date", "part", "chapter", "article_number",
)


@dataclass
class StatuteFragment:
    """One retrieved unit of statute text with its metadata."""
    id: str
    content: str
    law_name: str
    category: str
    region: str
    publish_date: str
    part: str
    chapter: str
    article_number: str
    # Vector distance (lower = more similar); stamped after the metadata join
    distance: float = 0.0

    @property
    def source_file(self) -> str:
        return f"{self.law_name}.txt"

    @property
    def is_local_regulation(self) -> bool:
        return self.category == CATEGORY_LOCAL_REGULATION

    def citation(self) -> str:
        return f"《{self.law_name}》{self.article_number}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "content": self.content,
            "law_name": self.law_name,
            "category": self.category,
            "region": self.region,
            "publish_date": self.publish_date,
            "part": self.part,
            "chapter": self.chapter,
            "article_number": self.article_number,
            "distance": self.distance,
            "source_file": self.source_file,
        }

    @classmethod
    def from_row(cls, row: dict) -> "StatuteFragment":
        """Build a fragment from a `chunks` row; NULL text columns become ''."""
        return cls(
            id=str(row["id"]),
            content=row.get("content") or "",
            law_name=row.get("law_name") or "",
            category=row.get("category") or "",
            region=row.get("region") or "",
            publish_date=row.get("publish_date") or "",
            part=row.get("part") or "",
            chapter=row.get("chapter") or "",
            article_number=row.get("article_number") or "",
        )


@dataclass
class LawNameSuggestion:
    """A law title matching a partial name, for autocomplete."""
    name: str
    region: str
    category: str

    def to_dict(self) -> dict:
        return {"name": self.name, "region": self.region, "category": self.category}


# ============================================================================
# Vector index (LanceDB)
# ============================================================================

class VectorIndex:
    """
    Nearest-neighbour search over the statute embedding table.

    Results come back as Arrow record batches; the ascending `_distance`
    order returned by LanceDB is preserved as-is.
    """

    def __init__(self, db_path: Path, table_name: str = "laws_vectors"):
        self.db_path = Path(db_path)
        self.table_name = table_name

    @classmethod
    def from_settings(cls, settings: Settings) -> "VectorIndex":
        return cls(settings.vector_db_path, settings.vector_table)

    def exists(self) -> bool:
        return self.db_path.exists()

    def _open_table(self):
        if not self.exists():
            raise NotFoundError(f"数据库路径不存在: {self.db_path}")

        import lancedb

        try:
            db = lancedb.connect(str(self.db_path))
            return db.open_table(self.table_name)
        except Exception as e:
            logger.error(f"Cannot open vector table {self.table_name} at {self.db_path}: {e}")
            raise NotFoundError(f"Open table error ({self.table_name}): {e}") from e

    def search(self, vector: Sequence[float], limit: int) -> list[tuple[str, float]]:
        """
        Return up to `limit` (chunk_id, distance) pairs, nearest first.

        Raises:
            NotFoundError: index directory or table missing
            VectorSearchError: query execution failed
            DecodeError: result batches lack `chunk_id` / `_distance`
        """
        table = self._open_table()

        try:
            result = (
                table.search(vector)
                .limit(limit)
                .select(["chunk_id"])
                .to_arrow()
            )
        except Exception as e:
            logger.error(f"Vector search failed on {self.table_name}: {e}")
            raise VectorSearchError(f"Vector query error: {e}") from e

        hits = []
        for batch in result.to_batches():
            hits.extend(self._read_batch(batch))

        logger.debug(f"Vector search returned {len(hits)} hits (limit={limit})")
        return hits

    @staticmethod
    def _read_batch(batch) -> list[tuple[str, float]]:
        names = batch.schema.names
        if "chunk_id" not in names:
            raise DecodeError("Missing chunk_id")
        if "_distance" not in names:
            raise DecodeError("Missing _distance")

        ids = batch.column(names.index("chunk_id")).to_pylist()
        distances = batch.column(names.index("_distance")).to_pylist()
        return [(str(cid), float(dist)) for cid, dist in zip(ids, distances)]


# ============================================================================
# Metadata store (SQLite / PostgreSQL)
# ============================================================================

class MetadataStore:
    """
    Read-only access to the `chunks` and `full_texts` tables.

    Uses `<data_dir>/content.db` unless a PostgreSQL DSN is given.
    """

    def __init__(self, sqlite_path: Optional[Path] = None, dsn: Optional[str] = None):
        if sqlite_path is None and dsn is None:
            raise ValueError("MetadataStore needs either a sqlite path or a DSN")
        self.sqlite_path = Path(sqlite_path) if sqlite_path is not None else None
        self.dsn = dsn

    @classmethod
    def from_settings(cls, settings: Settings) -> "MetadataStore":
        if settings.metadata_dsn:
            return cls(dsn=settings.metadata_dsn)
        return cls(sqlite_path=settings.content_db_path)

    @property
    def _placeholder(self) -> str:
        return "%s" if self.dsn else "?"

    @contextmanager
    def _connect(self):
        """Open a short-lived connection whose rows behave like dicts."""
        if self.dsn:
            if psycopg2 is None:
                raise MetadataLookupError("psycopg2 not installed. Run: pip install psycopg2-binary")
        elif not self.sqlite_path.exists():
            raise MetadataLookupError(f"Metadata database not found: {self.sqlite_path}")

        try:
            if self.dsn:
                conn = psycopg2.connect(self.dsn, cursor_factory=psycopg2.extras.RealDictCursor)
            else:
                conn = sqlite3.connect(f"file:{self.sqlite_path}?mode=ro", uri=True)
                conn.row_factory = sqlite3.Row
        except DB_ERRORS as e:
            logger.error(f"Metadata store connect failed: {e}")
            raise MetadataLookupError(f"Metadata store connect error: {e}") from e

        try:
            yield conn
        finally:
            conn.close()

    def _query(self, sql: str, params: Sequence) -> list[dict]:
        with self._connect() as conn:
            try:
                cur = conn.cursor()
                cur.execute(sql, tuple(params))
                rows = cur.fetchall()
                cur.close()
            except DB_ERRORS as e:
                logger.error(f"Metadata query failed: {e}")
                raise MetadataLookupError(f"Metadata query failed: {e}") from e
        return [dict(row) for row in rows]

    def fetch_chunks(self, chunk_ids: Sequence[str]) -> dict[str, StatuteFragment]:
        """
        Batch-fetch metadata rows for exactly these ids in one query.

        Returns a mapping keyed by id; ids without a row are simply absent.
        """
        if not chunk_ids:
            return {}

        unique_ids = list(dict.fromkeys(chunk_ids))
        placeholders = ",".join([self._placeholder] * len(unique_ids))
        sql = (
            f"SELECT {', '.join(CHUNK_COLUMNS)} "
            f"FROM chunks WHERE id IN ({placeholders})"
        )
        rows = self._query(sql, unique_ids)

        fragments = {}
        for row in rows:
            fragment = StatuteFragment.from_row(row)
            fragments[fragment.id] = fragment
        return fragments

    def suggest_law_names(self, query: str, limit: int = 10) -> list[LawNameSuggestion]:
        """
        Autocomplete law titles containing `query`.

        National statutes rank first, then judicial interpretations,
        administrative and local regulations; ties go to the shorter name.
        """
        ph = self._placeholder
        sql = (
            "SELECT DISTINCT law_name, region, category FROM full_texts "
            f"WHERE law_name LIKE {ph} LIMIT {SUGGESTION_SCAN_LIMIT}"
        )
        rows = self._query(sql, [f"%{query}%"])

        suggestions = [
            LawNameSuggestion(
                name=row["law_name"] or "",
                region=row.get("region") or "",
                category=row.get("category") or "",
            )
            for row in rows
        ]
        suggestions.sort(key=lambda s: (
            CATEGORY_PRIORITY.get(s.category, UNKNOWN_CATEGORY_PRIORITY),
            len(s.name),
        ))
        return suggestions[:limit]

    def get_article_snippet(
        self,
        article_number: str,
        current_law_name: str,
        law_name_query: Optional[str] = None,
    ) -> str:
        """
        Return the text of one article, for inline citation previews.

        Looks in `law_name_query` when given, otherwise in the law currently
        being read. A miss returns a readable placeholder, not an error.
        """
        target_law = law_name_query or current_law_name
        ph = self._placeholder
        sql = (
            "SELECT content FROM chunks "
            f"WHERE law_name LIKE {ph} AND article_number = {ph} LIMIT 1"
        )
        rows = self._query(sql, [f"%{target_law}%", article_number])
        if rows:
            return rows[0]["content"]
        return f"未找到《{target_law}》的{article_number}"

    def get_full_text(self, source_file: str) -> str:
        """
        Return the complete text of a law given its `<law_name>.txt` source file.

        Raises:
            NotFoundError: no full text stored for that law
        """
        law_name = source_file[:-4] if source_file.endswith(".txt") else source_file
        sql = f"SELECT full_text FROM full_texts WHERE law_name = {self._placeholder}"
        rows = self._query(sql, [law_name])
        if not rows:
            raise NotFoundError("未找到该法条全文")
        return rows[0]["full_text"]
