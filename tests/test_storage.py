"""
Unit tests for storage layer.

Tests schema creation, user counters, project context selection and the
interaction ledger.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from ai_gen_broker.core.errors import InteractionStateError, InvalidRequest, NotFound
from ai_gen_broker.core.token_counter import TokenUsage
from ai_gen_broker.storage.db import get_connection
from ai_gen_broker.storage.models import ContextFile, InteractionStatus
from ai_gen_broker.storage.repository import (
    InteractionRepository,
    ProjectRepository,
    UserRepository,
    initialize_schema,
)


class TestStorageSchema:
    """Test database schema creation and structure."""

    def test_schema_creation(self):
        """Verify tables are created and creation is idempotent."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)
            initialize_schema(db_path)

            conn = get_connection(db_path)
            try:
                cursor = conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
                tables = {row[0] for row in cursor.fetchall()}
            finally:
                conn.close()

            assert {"users", "projects", "project_files", "ai_interaction"} <= tables


class _RepositoryTest:
    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)


class TestUserRepository(_RepositoryTest):
    """Test per-user quota counters."""

    def test_create_and_get_user(self):
        users = UserRepository(self.db_path)
        state = users.create_user("alice", "developer", today="2025-03-10")

        assert state.user_id == "alice"
        assert state.role == "developer"
        assert state.daily.date == "2025-03-10"
        assert state.daily.tokens_used == 0
        assert state.monthly.month == "2025-03"
        assert users.get_user("nobody") is None

    def test_duplicate_user_rejected(self):
        users = UserRepository(self.db_path)
        users.create_user("alice", "developer")

        with pytest.raises(ValueError, match="User already exists"):
            users.create_user("alice", "admin")

    def test_rollover_resets_stale_day_only_once(self):
        users = UserRepository(self.db_path)
        users.create_user("alice", "developer", today="2025-03-09")
        users.set_daily_usage("alice", "2025-03-09", 500, request_count=3)

        assert users.rollover_if_stale("alice", "2025-03-10") is True
        assert users.rollover_if_stale("alice", "2025-03-10") is False

        state = users.get_user("alice")
        assert state.daily.date == "2025-03-10"
        assert state.daily.tokens_used == 0
        assert state.daily.request_count == 0

    def test_increment_usage_updates_all_buckets(self):
        users = UserRepository(self.db_path)
        users.create_user("alice", "developer", today="2025-03-10")

        users.increment_usage("alice", 100, "2025-03-10")
        state = users.increment_usage("alice", 50, "2025-03-10")

        assert state.daily.tokens_used == 150
        assert state.daily.request_count == 2
        assert state.monthly.tokens_used == 150
        assert state.total_tokens_used == 150
        assert state.total_requests == 2

    def test_increment_on_stale_bucket_restarts_it(self):
        users = UserRepository(self.db_path)
        users.create_user("alice", "developer", today="2025-03-31")
        users.increment_usage("alice", 900, "2025-03-31")

        state = users.increment_usage("alice", 10, "2025-04-01")

        assert state.daily.date == "2025-04-01"
        assert state.daily.tokens_used == 10
        assert state.monthly.month == "2025-04"
        assert state.monthly.tokens_used == 10
        assert state.total_tokens_used == 910

    def test_increment_unknown_user(self):
        with pytest.raises(NotFound):
            UserRepository(self.db_path).increment_usage("ghost", 1, "2025-03-10")


class TestProjectRepository(_RepositoryTest):
    """Test project lookup and context file selection."""

    def test_create_and_get_project(self):
        projects = ProjectRepository(self.db_path)
        project = projects.create_project("alice", "Shop", is_public=True)

        loaded = projects.get_project(project.project_id)
        assert loaded == project
        assert projects.get_project("missing") is None

    def test_context_files_newest_first_within_budget(self):
        projects = ProjectRepository(self.db_path)
        project = projects.create_project("alice", "Shop")
        base = datetime(2025, 3, 1, tzinfo=timezone.utc)
        projects.add_file(project.project_id, "old.js", "o" * 40, last_modified=base)
        projects.add_file(project.project_id, "big.js", "b" * 400, last_modified=base + timedelta(hours=1))
        projects.add_file(project.project_id, "new.js", "n" * 40, last_modified=base + timedelta(hours=2))

        files = projects.get_files_for_context(project.project_id, max_tokens=50)

        # new.js (10 tokens) fits, big.js (100 tokens) overflows and stops selection
        assert [f.filename for f in files] == ["new.js"]

    def test_context_files_all_fit(self):
        projects = ProjectRepository(self.db_path)
        project = projects.create_project("alice", "Shop")
        projects.add_file(project.project_id, "a.js", "const a = 1;")

        files = projects.get_files_for_context(project.project_id, max_tokens=40000)

        assert len(files) == 1
        assert files[0].size == len("const a = 1;")


class TestInteractionRepository(_RepositoryTest):
    """Test the interaction lifecycle and queries."""

    def _begin(self, recorder, user_id="alice", mode="generate", project_id=None):
        return recorder.begin(user_id, project_id, "make a button", mode, "primary-model")

    def test_begin_creates_pending_record(self):
        recorder = InteractionRepository(self.db_path)
        interaction_id = self._begin(recorder)

        record = recorder.get_by_id(interaction_id, "alice")
        assert record.status == InteractionStatus.PENDING
        assert record.response is None
        assert record.model == "primary-model"

    def test_complete_success(self):
        recorder = InteractionRepository(self.db_path)
        interaction_id = self._begin(recorder)

        recorder.complete_success(
            interaction_id,
            response="<button/>",
            model_used="local-heuristic",
            tokens_used=TokenUsage(input_tokens=30, output_tokens=3),
            response_time_ms=12,
            context_files=[ContextFile(filename="a.js", size=10)],
            strategy="local-heuristic",
        )

        record = recorder.get_by_id(interaction_id, "alice")
        assert record.success is True
        assert record.response == "<button/>"
        assert record.total_tokens == 33
        assert record.context_files == [ContextFile(filename="a.js", size=10)]
        assert record.completed_at is not None

    def test_terminal_state_is_final(self):
        recorder = InteractionRepository(self.db_path)
        interaction_id = self._begin(recorder)
        recorder.complete_failure(interaction_id, "boom", 5)

        with pytest.raises(InteractionStateError):
            recorder.complete_failure(interaction_id, "again", 6)
        with pytest.raises(InteractionStateError):
            recorder.complete_success(
                interaction_id, "text", "mock", TokenUsage(1, 1), 1, [],
            )

        record = recorder.get_by_id(interaction_id, "alice")
        assert record.status == InteractionStatus.FAILED
        assert record.failure_reason == "boom"
        assert record.response is None

    def test_list_for_user_paginates_without_responses(self):
        recorder = InteractionRepository(self.db_path)
        ids = []
        for _ in range(3):
            interaction_id = self._begin(recorder)
            recorder.complete_success(interaction_id, "body", "mock", TokenUsage(1, 1), 1, [])
            ids.append(interaction_id)
        self._begin(recorder, user_id="bob")

        listing = recorder.list_for_user("alice", page=1, limit=2)

        assert listing["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2}
        assert [r.interaction_id for r in listing["interactions"]] == [ids[2], ids[1]]
        assert all(r.response is None for r in listing["interactions"])

    def test_list_for_user_filters(self):
        recorder = InteractionRepository(self.db_path)
        self._begin(recorder, mode="generate", project_id="p1")
        self._begin(recorder, mode="explain", project_id="p2")

        assert recorder.list_for_user("alice", mode="explain")["pagination"]["total"] == 1
        assert recorder.list_for_user("alice", project_id="p1")["pagination"]["total"] == 1

    def test_list_for_user_since_days(self):
        old_clock = lambda: datetime(2025, 1, 1, tzinfo=timezone.utc)
        now_clock = lambda: datetime(2025, 3, 1, tzinfo=timezone.utc)
        self._begin(InteractionRepository(self.db_path, clock=old_clock))
        self._begin(InteractionRepository(self.db_path, clock=now_clock))

        recorder = InteractionRepository(self.db_path, clock=now_clock)
        assert recorder.list_for_user("alice", since_days=30)["pagination"]["total"] == 1
        assert recorder.list_for_user("alice", since_days=None)["pagination"]["total"] == 2

    def test_list_for_user_rejects_bad_paging(self):
        recorder = InteractionRepository(self.db_path)

        with pytest.raises(InvalidRequest):
            recorder.list_for_user("alice", page=0)
        with pytest.raises(InvalidRequest):
            recorder.list_for_user("alice", limit=101)

    def test_ownership_rules(self):
        recorder = InteractionRepository(self.db_path)
        interaction_id = self._begin(recorder)

        with pytest.raises(NotFound, match="Interaction not found"):
            recorder.get_by_id(interaction_id, "bob")
        with pytest.raises(NotFound):
            recorder.delete_by_id(interaction_id, "bob")

        recorder.delete_by_id(interaction_id, "alice")
        with pytest.raises(NotFound):
            recorder.get_by_id(interaction_id, "alice")

    def test_list_for_project(self):
        recorder = InteractionRepository(self.db_path)
        self._begin(recorder, project_id="p1")
        self._begin(recorder, user_id="bob", project_id="p1")
        self._begin(recorder, project_id="p2")

        records = recorder.list_for_project("p1")

        assert {r.user_id for r in records} == {"alice", "bob"}

    def test_stats_for_user(self):
        recorder = InteractionRepository(self.db_path)
        first = self._begin(recorder, mode="generate")
        recorder.complete_success(first, "x", "mock", TokenUsage(10, 5), 100, [])
        second = self._begin(recorder, mode="explain")
        recorder.complete_failure(second, "boom", 300)

        stats = recorder.stats_for_user("alice", since_days=7)

        assert stats["total_interactions"] == 2
        assert stats["successful_interactions"] == 1
        assert stats["failed_interactions"] == 1
        assert stats["success_rate"] == 0.5
        assert stats["total_tokens_used"] == 15
        assert stats["avg_response_time_ms"] == 200.0
        assert stats["by_mode"]["generate"] == {"count": 1, "tokens": 15}
        assert stats["by_model"]["mock"]["count"] == 1
        assert stats["period_days"] == 7

    def test_stats_leave_pending_out_of_success_rate(self):
        recorder = InteractionRepository(self.db_path)
        done = self._begin(recorder)
        recorder.complete_success(done, "x", "mock", TokenUsage(4, 4), 120, [])
        self._begin(recorder)

        stats = recorder.stats_for_user("alice", since_days=7)

        assert stats["total_interactions"] == 2
        assert stats["pending_interactions"] == 1
        assert stats["success_rate"] == 1.0
        assert stats["avg_response_time_ms"] == 120.0
