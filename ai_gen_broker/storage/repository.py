"""
Repository pattern for data access.

Handles database operations for user quota state, project context and the
interaction history ledger.
"""

import json
import math
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from ai_gen_broker.core.errors import InteractionStateError, InvalidRequest, NotFound
from ai_gen_broker.core.token_counter import TokenUsage, estimate_tokens

from .db import get_connection
from .models import (
    ContextFile,
    DailyUsage,
    InteractionRecord,
    InteractionStatus,
    MonthlyUsage,
    Project,
    ProjectFile,
    UserQuotaState,
)

DEFAULT_DB_PATH = "ai_gen_broker.db"
MAX_PAGE_SIZE = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create all broker tables if they don't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                user_id TEXT PRIMARY KEY,
                role TEXT NOT NULL,
                usage_date TEXT NOT NULL,
                tokens_used INTEGER NOT NULL DEFAULT 0,
                request_count INTEGER NOT NULL DEFAULT 0,
                usage_month TEXT NOT NULL,
                monthly_tokens INTEGER NOT NULL DEFAULT 0,
                monthly_requests INTEGER NOT NULL DEFAULT 0,
                total_tokens INTEGER NOT NULL DEFAULT 0,
                total_requests INTEGER NOT NULL DEFAULT 0
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS projects (
                project_id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                name TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                language TEXT NOT NULL DEFAULT 'javascript',
                is_public INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS project_files (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                project_id TEXT NOT NULL REFERENCES projects(project_id) ON DELETE CASCADE,
                filename TEXT NOT NULL,
                content TEXT NOT NULL,
                size INTEGER NOT NULL,
                last_modified TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS ai_interaction (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                project_id TEXT,
                prompt TEXT NOT NULL,
                mode TEXT NOT NULL,
                model TEXT NOT NULL,
                strategy TEXT,
                status TEXT NOT NULL,
                response TEXT,
                failure_reason TEXT,
                input_tokens INTEGER NOT NULL DEFAULT 0,
                output_tokens INTEGER NOT NULL DEFAULT 0,
                total_tokens INTEGER NOT NULL DEFAULT 0,
                response_time_ms INTEGER NOT NULL DEFAULT 0,
                context_files TEXT NOT NULL DEFAULT '[]',
                metadata TEXT NOT NULL DEFAULT '{}',
                created_at TEXT NOT NULL,
                completed_at TEXT
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_interaction_user_created "
            "ON ai_interaction (user_id, created_at)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_interaction_project_created "
            "ON ai_interaction (project_id, created_at)"
        )
        conn.commit()
    finally:
        conn.close()


_USER_COLUMNS = """
    user_id, role, usage_date, tokens_used, request_count,
    usage_month, monthly_tokens, monthly_requests, total_tokens, total_requests
"""


class UserRepository:
    """User/role store holding the per-user quota counters.

    Every mutation is a single UPDATE statement, so concurrent writers
    never lose an increment.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def create_user(self, user_id: str, role: str, today: Optional[str] = None) -> UserQuotaState:
        """Insert a user with an empty usage bucket for `today`.

        Raises:
            ValueError: If the user already exists
        """
        if not user_id or not user_id.strip():
            raise ValueError("user_id is required and cannot be empty")
        today = today or _utcnow().date().isoformat()
        conn = get_connection(self.db_path)
        try:
            existing = conn.execute(
                "SELECT 1 FROM users WHERE user_id = ?", (user_id,)
            ).fetchone()
            if existing:
                raise ValueError(f"User already exists: {user_id}")
            conn.execute(
                "INSERT INTO users (user_id, role, usage_date, usage_month) VALUES (?, ?, ?, ?)",
                (user_id, role, today, today[:7]),
            )
            conn.commit()
        finally:
            conn.close()
        return self.get_user(user_id)

    def get_user(self, user_id: str) -> Optional[UserQuotaState]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE user_id = ?", (user_id,)
            ).fetchone()
        finally:
            conn.close()
        return self._row_to_state(row) if row else None

    def set_daily_usage(self, user_id: str, date: str, tokens_used: int, request_count: int = 0) -> None:
        """Overwrite the daily bucket. Used for seeding and administration."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "UPDATE users SET usage_date = ?, tokens_used = ?, request_count = ? WHERE user_id = ?",
                (date, tokens_used, request_count, user_id),
            )
            conn.commit()
            if cursor.rowcount == 0:
                raise NotFound("User not found")
        finally:
            conn.close()

    def rollover_if_stale(self, user_id: str, today: str) -> bool:
        """Reset daily and monthly buckets whose stored period is not current.

        Both resets are conditional UPDATEs, so concurrent readers that race
        on the same stale row converge on the same fresh state.

        Args:
            user_id: User whose buckets to check
            today: Current UTC date (YYYY-MM-DD)

        Returns:
            True if the daily bucket was reset
        """
        month = today[:7]
        conn = get_connection(self.db_path)
        try:
            daily = conn.execute(
                """
                UPDATE users SET usage_date = ?, tokens_used = 0, request_count = 0
                WHERE user_id = ? AND usage_date != ?
                """,
                (today, user_id, today),
            )
            conn.execute(
                """
                UPDATE users SET usage_month = ?, monthly_tokens = 0, monthly_requests = 0
                WHERE user_id = ? AND usage_month != ?
                """,
                (month, user_id, month),
            )
            conn.commit()
            return daily.rowcount > 0
        finally:
            conn.close()

    def increment_usage(self, user_id: str, tokens: int, today: str) -> UserQuotaState:
        """Atomically add `tokens` and one request to every usage bucket.

        A stale day or month bucket is restarted inside the same statement
        instead of being incremented.

        Args:
            user_id: User to charge
            tokens: Non-negative token amount
            today: Current UTC date (YYYY-MM-DD)

        Returns:
            The state after the increment

        Raises:
            ValueError: If tokens is negative
            NotFound: If the user does not exist
        """
        if tokens < 0:
            raise ValueError("tokens cannot be negative")
        params = {"user_id": user_id, "tokens": tokens, "today": today, "month": today[:7]}
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                """
                UPDATE users SET
                    tokens_used = CASE WHEN usage_date = :today
                                       THEN tokens_used + :tokens ELSE :tokens END,
                    request_count = CASE WHEN usage_date = :today
                                         THEN request_count + 1 ELSE 1 END,
                    usage_date = :today,
                    monthly_tokens = CASE WHEN usage_month = :month
                                          THEN monthly_tokens + :tokens ELSE :tokens END,
                    monthly_requests = CASE WHEN usage_month = :month
                                            THEN monthly_requests + 1 ELSE 1 END,
                    usage_month = :month,
                    total_tokens = total_tokens + :tokens,
                    total_requests = total_requests + 1
                WHERE user_id = :user_id
                """,
                params,
            )
            if cursor.rowcount == 0:
                conn.rollback()
                raise NotFound("User not found")
            row = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE user_id = ?", (user_id,)
            ).fetchone()
            conn.commit()
        finally:
            conn.close()
        return self._row_to_state(row)

    @staticmethod
    def _row_to_state(row: tuple) -> UserQuotaState:
        return UserQuotaState(
            user_id=row[0],
            role=row[1],
            daily=DailyUsage(date=row[2], tokens_used=row[3], request_count=row[4]),
            monthly=MonthlyUsage(month=row[5], tokens_used=row[6], request_count=row[7]),
            total_tokens_used=row[8],
            total_requests=row[9],
        )


class ProjectRepository:
    """Project/file store used for prompt context."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def create_project(
        self,
        owner_id: str,
        name: str,
        description: str = "",
        language: str = "javascript",
        is_public: bool = False,
        project_id: Optional[str] = None,
    ) -> Project:
        project = Project(
            project_id=project_id or uuid.uuid4().hex,
            owner_id=owner_id,
            name=name,
            description=description,
            language=language,
            is_public=is_public,
        )
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO projects
                (project_id, owner_id, name, description, language, is_public, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    project.project_id,
                    project.owner_id,
                    project.name,
                    project.description,
                    project.language,
                    1 if project.is_public else 0,
                    _utcnow().isoformat(),
                ),
            )
            conn.commit()
        finally:
            conn.close()
        return project

    def get_project(self, project_id: str) -> Optional[Project]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                """
                SELECT project_id, owner_id, name, description, language, is_public
                FROM projects WHERE project_id = ?
                """,
                (project_id,),
            ).fetchone()
        finally:
            conn.close()
        if not row:
            return None
        return Project(
            project_id=row[0],
            owner_id=row[1],
            name=row[2],
            description=row[3],
            language=row[4],
            is_public=bool(row[5]),
        )

    def add_file(
        self,
        project_id: str,
        filename: str,
        content: str,
        last_modified: Optional[datetime] = None,
    ) -> ProjectFile:
        project_file = ProjectFile(
            filename=filename,
            content=content,
            size=len(content.encode("utf-8")),
            last_modified=last_modified or _utcnow(),
        )
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO project_files (project_id, filename, content, size, last_modified)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    project_id,
                    project_file.filename,
                    project_file.content,
                    project_file.size,
                    project_file.last_modified.isoformat(),
                ),
            )
            conn.commit()
        finally:
            conn.close()
        return project_file

    def get_files_for_context(self, project_id: str, max_tokens: int) -> List[ProjectFile]:
        """Return the most recently modified files that fit in `max_tokens`.

        Files are taken newest first; selection stops at the first file that
        would push the estimated total past the budget.

        Args:
            project_id: Project to read
            max_tokens: Estimated-token budget for all selected files

        Returns:
            Selected files, newest first
        """
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                """
                SELECT filename, content, size, last_modified FROM project_files
                WHERE project_id = ? ORDER BY last_modified DESC, id DESC
                """,
                (project_id,),
            ).fetchall()
        finally:
            conn.close()

        selected = []
        total_tokens = 0
        for row in rows:
            file_tokens = estimate_tokens(row[1])
            if total_tokens + file_tokens > max_tokens:
                break
            selected.append(ProjectFile(
                filename=row[0],
                content=row[1],
                size=row[2],
                last_modified=datetime.fromisoformat(row[3]),
            ))
            total_tokens += file_tokens
        return selected


_INTERACTION_COLUMNS = """
    id, user_id, project_id, prompt, mode, model, strategy, status, {response},
    failure_reason, input_tokens, output_tokens, total_tokens, response_time_ms,
    context_files, metadata, created_at, completed_at
"""


class InteractionRepository:
    """Interaction history ledger.

    Records are inserted pending and reach exactly one terminal state;
    the terminal UPDATEs only match pending rows.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH, clock: Optional[Callable[[], datetime]] = None):
        self.db_path = db_path
        self.clock = clock or _utcnow

    def begin(
        self,
        user_id: str,
        project_id: Optional[str],
        prompt: str,
        mode: str,
        model_hint: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Create a pending record before any generation work starts.

        Returns:
            The new record id
        """
        interaction_id = uuid.uuid4().hex
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO ai_interaction
                (id, user_id, project_id, prompt, mode, model, status, metadata, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    interaction_id,
                    user_id,
                    project_id,
                    prompt,
                    mode,
                    model_hint,
                    InteractionStatus.PENDING.value,
                    json.dumps(metadata or {}),
                    self.clock().isoformat(),
                ),
            )
            conn.commit()
        finally:
            conn.close()
        return interaction_id

    def complete_success(
        self,
        interaction_id: str,
        response: str,
        model_used: str,
        tokens_used: TokenUsage,
        response_time_ms: int,
        context_files: List[ContextFile],
        strategy: Optional[str] = None,
    ) -> None:
        """Move a pending record to its terminal success shape.

        Raises:
            InteractionStateError: If the record is missing or not pending
        """
        self._complete(
            interaction_id,
            """
            UPDATE ai_interaction SET
                status = ?, response = ?, model = ?, strategy = ?,
                input_tokens = ?, output_tokens = ?, total_tokens = ?,
                response_time_ms = ?, context_files = ?, completed_at = ?
            WHERE id = ? AND status = ?
            """,
            (
                InteractionStatus.SUCCEEDED.value,
                response,
                model_used,
                strategy,
                tokens_used.input_tokens,
                tokens_used.output_tokens,
                tokens_used.total_tokens,
                response_time_ms,
                json.dumps([f.to_dict() for f in context_files]),
                self.clock().isoformat(),
                interaction_id,
                InteractionStatus.PENDING.value,
            ),
        )

    def complete_failure(self, interaction_id: str, failure_reason: str, response_time_ms: int) -> None:
        """Move a pending record to its terminal failure shape (no response)."""
        self._complete(
            interaction_id,
            """
            UPDATE ai_interaction SET
                status = ?, failure_reason = ?, response_time_ms = ?, completed_at = ?
            WHERE id = ? AND status = ?
            """,
            (
                InteractionStatus.FAILED.value,
                failure_reason,
                response_time_ms,
                self.clock().isoformat(),
                interaction_id,
                InteractionStatus.PENDING.value,
            ),
        )

    def _complete(self, interaction_id: str, query: str, params: tuple) -> None:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(query, params)
            conn.commit()
            updated = cursor.rowcount
        finally:
            conn.close()
        if updated == 0:
            raise InteractionStateError(f"Interaction {interaction_id} is not pending")

    def list_for_user(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 20,
        project_id: Optional[str] = None,
        mode: Optional[str] = None,
        since_days: Optional[int] = 30,
    ) -> Dict[str, Any]:
        """Paginated history for a user, newest first, without response bodies.

        Args:
            user_id: Owner of the records
            page: 1-based page number
            limit: Page size (1..100)
            project_id: Optional project filter
            mode: Optional mode filter
            since_days: Optional look-back window in days (None or 0 = all)

        Returns:
            {"interactions": [...], "pagination": {page, limit, total, pages}}

        Raises:
            InvalidRequest: If pagination parameters are out of range
        """
        if page < 1:
            raise InvalidRequest("page must be >= 1")
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise InvalidRequest(f"limit must be between 1 and {MAX_PAGE_SIZE}")

        conditions = ["user_id = ?"]
        params: List[Any] = [user_id]
        if project_id:
            conditions.append("project_id = ?")
            params.append(project_id)
        if mode:
            conditions.append("mode = ?")
            params.append(mode)
        if since_days:
            conditions.append("created_at >= ?")
            params.append((self.clock() - timedelta(days=since_days)).isoformat())
        where = " WHERE " + " AND ".join(conditions)

        conn = get_connection(self.db_path)
        try:
            total = conn.execute(
                "SELECT COUNT(*) FROM ai_interaction" + where, params
            ).fetchone()[0]
            rows = conn.execute(
                "SELECT " + _INTERACTION_COLUMNS.format(response="NULL")
                + " FROM ai_interaction" + where
                + " ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
                params + [limit, (page - 1) * limit],
            ).fetchall()
        finally:
            conn.close()

        return {
            "interactions": [self._row_to_record(row) for row in rows],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit),
            },
        }

    def list_for_project(self, project_id: str, limit: int = 50) -> List[InteractionRecord]:
        """Project history, newest first, without response bodies."""
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise InvalidRequest(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                "SELECT " + _INTERACTION_COLUMNS.format(response="NULL")
                + " FROM ai_interaction WHERE project_id = ?"
                + " ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (project_id, limit),
            ).fetchall()
        finally:
            conn.close()
        return [self._row_to_record(row) for row in rows]

    def get_by_id(self, interaction_id: str, user_id: str) -> InteractionRecord:
        """Full record, including the response body.

        Raises:
            NotFound: If absent or owned by another user
        """
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT " + _INTERACTION_COLUMNS.format(response="response")
                + " FROM ai_interaction WHERE id = ? AND user_id = ?",
                (interaction_id, user_id),
            ).fetchone()
        finally:
            conn.close()
        if not row:
            raise NotFound("Interaction not found")
        return self._row_to_record(row)

    def delete_by_id(self, interaction_id: str, user_id: str) -> None:
        """Delete a record owned by `user_id`.

        Raises:
            NotFound: If absent or owned by another user
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "DELETE FROM ai_interaction WHERE id = ? AND user_id = ?",
                (interaction_id, user_id),
            )
            conn.commit()
            deleted = cursor.rowcount
        finally:
            conn.close()
        if deleted == 0:
            raise NotFound("Interaction not found")

    def stats_for_user(self, user_id: str, since_days: int = 30) -> Dict[str, Any]:
        """Aggregate usage over the look-back window.

        Args:
            user_id: Owner of the records
            since_days: Number of days to include

        Returns:
            Dictionary with counts, success rate, token totals, average
            response time and per-mode / per-model breakdowns. Pending
            records are counted separately and left out of the success rate
            and average response time.
        """
        cutoff = (self.clock() - timedelta(days=since_days)).isoformat()
        params = (user_id, cutoff)
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                """
                SELECT
                    COUNT(*),
                    SUM(CASE WHEN status = 'succeeded' THEN 1 ELSE 0 END),
                    SUM(CASE WHEN status = 'failed' THEN 1 ELSE 0 END),
                    SUM(total_tokens),
                    AVG(CASE WHEN status != 'pending' THEN response_time_ms END)
                FROM ai_interaction
                WHERE user_id = ? AND created_at >= ?
                """,
                params,
            ).fetchone()
            by_mode = conn.execute(
                """
                SELECT mode, COUNT(*), SUM(total_tokens) FROM ai_interaction
                WHERE user_id = ? AND created_at >= ? GROUP BY mode
                """,
                params,
            ).fetchall()
            by_model = conn.execute(
                """
                SELECT model, COUNT(*), SUM(total_tokens) FROM ai_interaction
                WHERE user_id = ? AND created_at >= ? GROUP BY model
                """,
                params,
            ).fetchall()
        finally:
            conn.close()

        total = row[0] or 0
        succeeded = row[1] or 0
        failed = row[2] or 0
        completed = succeeded + failed
        return {
            "total_interactions": total,
            "successful_interactions": succeeded,
            "failed_interactions": failed,
            "pending_interactions": total - completed,
            "success_rate": (succeeded / completed) if completed else 0.0,
            "total_tokens_used": row[3] or 0,
            "avg_response_time_ms": float(row[4] or 0),
            "by_mode": {r[0]: {"count": r[1], "tokens": r[2] or 0} for r in by_mode},
            "by_model": {r[0]: {"count": r[1], "tokens": r[2] or 0} for r in by_model},
            "period_days": since_days,
        }

    @staticmethod
    def _row_to_record(row: tuple) -> InteractionRecord:
        return InteractionRecord(
            interaction_id=row[0],
            user_id=row[1],
            project_id=row[2],
            prompt=row[3],
            mode=row[4],
            model=row[5],
            strategy=row[6],
            status=InteractionStatus(row[7]),
            response=row[8],
            failure_reason=row[9],
            input_tokens=row[10],
            output_tokens=row[11],
            total_tokens=row[12],
            response_time_ms=row[13],
            context_files=[ContextFile(**f) for f in json.loads(row[14])],
            metadata=json.loads(row[15]),
            created_at=datetime.fromisoformat(row[16]),
            completed_at=datetime.fromisoformat(row[17]) if row[17] else None,
        )
