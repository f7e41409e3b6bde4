import json
import logging
import sqlite3
from collections.abc import Iterable, Iterator
from datetime import datetime

from urlreport.db.connection import MAX_SQL_PARAMS, connection
from urlreport.models.submission import NON_TERMINAL_STATES, Submission
from urlreport.repositories.base import AbstractSubmissionRepository, DuplicateSubmissionError

logger = logging.getLogger(__name__)

_NON_TERMINAL_SQL = ", ".join(f"'{state}'" for state in NON_TERMINAL_STATES)

_INSERT_SQL = """
    INSERT INTO submissions (url, identifier, state, tags, error, reported_at)
    VALUES (?, ?, ?, ?, ?, ?)
"""


def _chunked(values: list[str], size: int = MAX_SQL_PARAMS) -> Iterator[list[str]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


def _placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


def _row_params(submission: Submission) -> tuple:
    return (
        submission.url,
        submission.identifier,
        submission.state,
        json.dumps(submission.tags),
        submission.error,
        submission.reported_at.isoformat(),
    )


def _to_submission(row: sqlite3.Row) -> Submission:
    return Submission(
        url=row["url"],
        identifier=row["identifier"],
        state=row["state"],
        tags=json.loads(row["tags"] or "[]"),
        error=row["error"],
        reported_at=datetime.fromisoformat(row["reported_at"]),
    )


def _insert_row(conn: sqlite3.Connection, submission: Submission) -> None:
    try:
        conn.execute(_INSERT_SQL, _row_params(submission))
    except sqlite3.IntegrityError as exc:
        if exc.sqlite_errorname == "SQLITE_CONSTRAINT_UNIQUE":
            raise DuplicateSubmissionError(submission.url) from exc
        raise


class SubmissionRepository(AbstractSubmissionRepository):
    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def insert(self, submission: Submission) -> None:
        with connection(self._db_path) as conn:
            _insert_row(conn, submission)

    def insert_many(self, submissions: Iterable[Submission]) -> tuple[list[str], list[str]]:
        """
        Insert each record on its own so one duplicate does not reject the rest.
        Runs on a single connection and commits once at the end. Constraint
        failures other than a taken URL abort the whole call.
        """
        inserted: list[str] = []
        duplicates: list[str] = []
        with connection(self._db_path) as conn:
            for submission in submissions:
                try:
                    _insert_row(conn, submission)
                except DuplicateSubmissionError:
                    duplicates.append(submission.url)
                    continue
                inserted.append(submission.url)
        if duplicates:
            logger.info("[store] duplicate inserts ignored | count=%d", len(duplicates))
        return inserted, duplicates

    def find_existing_urls(self, urls: Iterable[str]) -> set[str]:
        existing: set[str] = set()
        with connection(self._db_path) as conn:
            for chunk in _chunked(list(urls)):
                rows = conn.execute(
                    f"SELECT url FROM submissions WHERE url IN ({_placeholders(len(chunk))})",
                    chunk,
                )
                existing.update(row["url"] for row in rows)
        return existing

    def get_by_url(self, url: str) -> Submission | None:
        with connection(self._db_path) as conn:
            row = conn.execute("SELECT * FROM submissions WHERE url = ?", (url,)).fetchone()
        return _to_submission(row) if row else None

    def update_identifier(self, url: str, identifier: str, expected: str) -> bool:
        with connection(self._db_path) as conn:
            cursor = conn.execute(
                """
                UPDATE submissions
                SET identifier = ?, updated_at = CURRENT_TIMESTAMP
                WHERE url = ? AND identifier = ?
                """,
                (identifier, url, expected),
            )
        return cursor.rowcount > 0

    def update_classification(self, url: str, state: str, tags: list[str]) -> bool:
        with connection(self._db_path) as conn:
            cursor = conn.execute(
                f"""
                UPDATE submissions
                SET state = ?, tags = ?, updated_at = CURRENT_TIMESTAMP
                WHERE url = ? AND state IN ({_NON_TERMINAL_SQL})
                """,
                (state, json.dumps(tags), url),
            )
        return cursor.rowcount > 0

    def update_classification_by_identifier(self, identifier: str, state: str, tags: list[str]) -> int:
        with connection(self._db_path) as conn:
            cursor = conn.execute(
                f"""
                UPDATE submissions
                SET state = ?, tags = ?, updated_at = CURRENT_TIMESTAMP
                WHERE identifier = ? AND state IN ({_NON_TERMINAL_SQL})
                """,
                (state, json.dumps(tags), identifier),
            )
        return cursor.rowcount

    def list_pending(self, limit: int, offset: int = 0) -> list[Submission]:
        with connection(self._db_path) as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM submissions
                WHERE identifier IS NOT NULL AND state IN ({_NON_TERMINAL_SQL})
                ORDER BY id
                LIMIT ? OFFSET ?
                """,
                (limit, offset),
            ).fetchall()
        return [_to_submission(row) for row in rows]

    def list_submissions(self, state: str | None = None, limit: int = 100, offset: int = 0) -> list[Submission]:
        query = "SELECT * FROM submissions"
        params: list = []
        if state:
            query += " WHERE state = ?"
            params.append(state)
        query += " ORDER BY reported_at DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        with connection(self._db_path) as conn:
            rows = conn.execute(query, params).fetchall()
        return [_to_submission(row) for row in rows]

    def iter_urls_with_tag(self, tag: str, page_size: int = 1000) -> Iterator[str]:
        last_id = 0
        while True:
            with connection(self._db_path) as conn:
                rows = conn.execute(
                    "SELECT id, url, tags FROM submissions WHERE id > ? ORDER BY id LIMIT ?",
                    (last_id, page_size),
                ).fetchall()
            if not rows:
                return
            for row in rows:
                if tag in json.loads(row["tags"] or "[]"):
                    yield row["url"]
            last_id = rows[-1]["id"]

    def delete_by_urls(self, urls: Iterable[str]) -> int:
        return self._delete_where("url", list(urls))

    def delete_by_states(self, states: Iterable[str]) -> int:
        return self._delete_where("state", list(states))

    def _delete_where(self, column: str, values: list[str]) -> int:
        deleted = 0
        with connection(self._db_path) as conn:
            for chunk in _chunked(values):
                cursor = conn.execute(
                    f"DELETE FROM submissions WHERE {column} IN ({_placeholders(len(chunk))})",
                    chunk,
                )
                deleted += cursor.rowcount
        logger.info("[store] deleted | by=%s | rows=%d", column, deleted)
        return deleted
