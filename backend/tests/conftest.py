import copy
import itertools
import os
import sys
from collections import defaultdict
from typing import Any, Callable, Optional

import pytest
from postgrest.exceptions import APIError

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pubflow.core.audit import AuditLogger
from pubflow.core.editor_capability import CapabilityCheck

# === 全局测试配置 ===
# 中文注释:
# 1. 单元测试不连真实 Supabase，用内存 FakeSupabase 模拟 PostgREST 查询构造器。
# 2. 唯一约束与 migrations/ 中的索引保持一致，违反时抛 23505，和云端一致。
# 3. fail_when() 用于注入“某张表某类写入失败”，覆盖部分成功路径。

DEFAULT_UNIQUE = {
    "articles": [("submission_id",)],
    "issues": [("journal_id", "volume", "number", "year")],
    "doi_registrations": [("article_id", "doi")],
}


class _FakeResp:
    def __init__(self, data=None, count=None):
        self.data = data
        self.count = count


class _FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str):
        self._db = db
        self._table = table
        self._op = "select"
        self._payload: Any = None
        self._on_conflict: Optional[str] = None
        self._filters: list[Callable[[dict], bool]] = []
        self._orders: list[tuple[str, bool]] = []
        self._range: Optional[tuple[int, int]] = None
        self._limit: Optional[int] = None
        self._count: Optional[str] = None

    # --- builders ---
    def select(self, _cols="*", count=None):
        self._count = count
        return self

    def insert(self, payload):
        self._op, self._payload = "insert", payload
        return self

    def update(self, payload):
        self._op, self._payload = "update", payload
        return self

    def upsert(self, payload, on_conflict=None, **_kwargs):
        self._op, self._payload, self._on_conflict = "upsert", payload, on_conflict
        return self

    def delete(self):
        self._op = "delete"
        return self

    def eq(self, col, val):
        self._filters.append(lambda r: r.get(col) == val)
        return self

    def neq(self, col, val):
        self._filters.append(lambda r: r.get(col) != val)
        return self

    def is_(self, col, val):
        if str(val).lower() == "null":
            self._filters.append(lambda r: r.get(col) is None)
        else:
            self._filters.append(lambda r: r.get(col) is val)
        return self

    def in_(self, col, values):
        allowed = list(values)
        self._filters.append(lambda r: r.get(col) in allowed)
        return self

    def order(self, col, desc=False):
        self._orders.append((col, desc))
        return self

    def range(self, start, end):
        self._range = (start, end)
        return self

    def limit(self, n):
        self._limit = n
        return self

    # --- execution ---
    def _matches(self, row: dict) -> bool:
        return all(f(row) for f in self._filters)

    def execute(self):
        return getattr(self, f"_exec_{self._op}")()

    def _exec_select(self):
        self._db._maybe_fail(self._table, "select", None)
        rows = [r for r in self._db.tables[self._table] if self._matches(r)]
        for col, desc in reversed(self._orders):
            present = [r for r in rows if r.get(col) is not None]
            missing = [r for r in rows if r.get(col) is None]
            present.sort(key=lambda r: r.get(col), reverse=desc)
            rows = missing + present if desc else present + missing
        total = len(rows)
        if self._range is not None:
            rows = rows[self._range[0] : self._range[1] + 1]
        if self._limit is not None:
            rows = rows[: self._limit]
        return _FakeResp(data=copy.deepcopy(rows), count=total if self._count else None)

    def _exec_insert(self):
        payload = self._payload if isinstance(self._payload, list) else [self._payload]
        inserted = []
        for raw in payload:
            row = copy.deepcopy(raw)
            self._db._maybe_fail(self._table, "insert", row)
            row.setdefault("id", self._db.next_id(self._table))
            row.setdefault("created_at", "2026-10-19T00:00:00+00:00")
            self._db._check_unique(self._table, row)
            self._db.tables[self._table].append(row)
            inserted.append(copy.deepcopy(row))
        return _FakeResp(data=inserted)

    def _exec_update(self):
        self._db._maybe_fail(self._table, "update", self._payload)
        updated = []
        for row in self._db.tables[self._table]:
            if not self._matches(row):
                continue
            candidate = {**row, **copy.deepcopy(self._payload)}
            self._db._check_unique(self._table, candidate, exclude=row)
            row.update(copy.deepcopy(self._payload))
            updated.append(copy.deepcopy(row))
        return _FakeResp(data=updated)

    def _exec_upsert(self):
        row = copy.deepcopy(self._payload)
        self._db._maybe_fail(self._table, "upsert", row)
        keys = [k.strip() for k in (self._on_conflict or "id").split(",")]
        for existing in self._db.tables[self._table]:
            if all(existing.get(k) == row.get(k) for k in keys):
                existing.update(row)
                return _FakeResp(data=[copy.deepcopy(existing)])
        row.setdefault("id", self._db.next_id(self._table))
        row.setdefault("created_at", "2026-10-19T00:00:00+00:00")
        self._db._check_unique(self._table, row)
        self._db.tables[self._table].append(row)
        return _FakeResp(data=[copy.deepcopy(row)])

    def _exec_delete(self):
        self._db._maybe_fail(self._table, "delete", None)
        kept, removed = [], []
        for row in self._db.tables[self._table]:
            (removed if self._matches(row) else kept).append(row)
        self._db.tables[self._table] = kept
        return _FakeResp(data=copy.deepcopy(removed))


class FakeSupabase:
    def __init__(self, unique: dict[str, list[tuple[str, ...]]] | None = None):
        self.tables: dict[str, list[dict]] = defaultdict(list)
        self.unique = DEFAULT_UNIQUE if unique is None else unique
        self._failures: list[dict[str, Any]] = []
        self._ids = itertools.count(1)

    def table(self, name: str) -> _FakeQuery:
        return _FakeQuery(self, name)

    def next_id(self, table: str) -> str:
        return f"{table}-{next(self._ids)}"

    def seed(self, table: str, *rows: dict) -> list[dict]:
        out = []
        for row in rows:
            row = copy.deepcopy(row)
            row.setdefault("id", self.next_id(table))
            self.tables[table].append(row)
            out.append(copy.deepcopy(row))
        return out

    def rows(self, table: str, **where: Any) -> list[dict]:
        return [
            copy.deepcopy(r)
            for r in self.tables[table]
            if all(r.get(k) == v for k, v in where.items())
        ]

    def fail_when(
        self,
        table: str,
        op: str,
        predicate: Callable[[Any], bool] | None = None,
        *,
        message: str = "simulated database failure",
        times: int | None = None,
    ) -> None:
        self._failures.append(
            {"table": table, "op": op, "predicate": predicate, "message": message, "times": times}
        )

    def _maybe_fail(self, table: str, op: str, row: Any) -> None:
        for rule in self._failures:
            if rule["table"] != table or rule["op"] != op:
                continue
            if rule["times"] is not None and rule["times"] <= 0:
                continue
            if rule["predicate"] is not None and not rule["predicate"](row):
                continue
            if rule["times"] is not None:
                rule["times"] -= 1
            raise RuntimeError(rule["message"])

    def _check_unique(self, table: str, row: dict, exclude: dict | None = None) -> None:
        for cols in self.unique.get(table, []):
            values = tuple(row.get(c) for c in cols)
            if any(v is None for v in values):
                continue
            for other in self.tables[table]:
                if other is exclude:
                    continue
                if tuple(other.get(c) for c in cols) == values:
                    raise APIError(
                        {
                            "message": f'duplicate key value violates unique constraint "{table}_{"_".join(cols)}_key"',
                            "code": "23505",
                            "hint": None,
                            "details": f"Key ({', '.join(cols)}) already exists.",
                        }
                    )


class FakeCapability:
    """
    Authorization oracle stand-in: grants (user_id, journal_id) pairs.
    A (user_id, None) pair stands for a global super admin.
    """

    def __init__(self, grants: set[tuple[str, Optional[str]]] | None = None):
        self.grants = set(grants or set())
        self.calls: list[tuple[Optional[str], Optional[str]]] = []

    def check(self, *, user_id, journal_id):
        self.calls.append((user_id, journal_id))
        ok = (user_id, journal_id) in self.grants
        return CapabilityCheck(authorized=ok, user_id=user_id, source="fake" if ok else None)


EDITOR_ID = "editor-1"
JOURNAL_ID = "journal-1"


@pytest.fixture
def fake_db() -> FakeSupabase:
    db = FakeSupabase()
    db.seed(
        "journals",
        {"id": JOURNAL_ID, "tenant_id": "tenant-1", "title": "Journal of Tests", "issn": "1234-5678"},
    )
    return db


@pytest.fixture
def capability() -> FakeCapability:
    return FakeCapability({(EDITOR_ID, JOURNAL_ID)})


@pytest.fixture
def audit(fake_db) -> AuditLogger:
    return AuditLogger(fake_db)


@pytest.fixture
def make_submission(fake_db):
    """
    工厂：写入一条 submission（可带作者/文件），返回 submission 行。
    """

    def _make(*, authors=None, files=None, **overrides):
        row = {
            "journal_id": JOURNAL_ID,
            "section_id": "section-1",
            "submitter_id": "author-1",
            "title": "On Idempotent Registration",
            "abstract": "We study retries.",
            "keywords": ["doi", "retry"],
            "status": "review_completed",
            "editor_id": None,
            "current_round": 1,
            "last_modified": "2026-10-01T00:00:00+00:00",
        }
        row.update(overrides)
        (submission,) = fake_db.seed("submissions", row)
        for author in authors or []:
            fake_db.seed("submission_authors", {"submission_id": submission["id"], **author})
        for f in files or []:
            fake_db.seed("submission_files", {"submission_id": submission["id"], **f})
        return submission

    return _make
