"""
Tests for the HTTP boundary.
"""

import os
import tempfile
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from ai_gen_broker.api.app import create_app, default_rate_limiter
from ai_gen_broker.config.loader import (
    BrokerConfig,
    LocalConfig,
    ProviderConfig,
    RateLimitConfig,
    StorageConfig,
)
from ai_gen_broker.core.local_generator import LocalHeuristicGenerator
from ai_gen_broker.core.orchestrator import ProviderFallbackOrchestrator
from ai_gen_broker.core.quota import QuotaLedger
from ai_gen_broker.core.rate_limiter import FixedWindowRateLimiter
from ai_gen_broker.core.service import GenerationService
from ai_gen_broker.storage.repository import (
    InteractionRepository,
    ProjectRepository,
    UserRepository,
    initialize_schema,
)


class TestAPI:
    """Test routes, status mapping and response envelopes."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "api.db")
        initialize_schema(self.db_path)
        self.users = UserRepository(self.db_path)
        self.projects = ProjectRepository(self.db_path)
        self.config = BrokerConfig(
            local=LocalConfig(min_delay_seconds=0, max_delay_seconds=0),
            storage=StorageConfig(db_path=self.db_path),
        )
        self.ledger = QuotaLedger(self.users, tiers=self.config.quota.tiers)
        self.service = GenerationService(
            ledger=self.ledger,
            recorder=InteractionRepository(self.db_path),
            projects=self.projects,
            orchestrator=ProviderFallbackOrchestrator(
                None,
                ProviderConfig(),
                local_generator=LocalHeuristicGenerator(0, 0, sleep=Mock()),
                api_key="",
            ),
            config=self.config,
        )
        self.users.create_user("alice", "developer")
        self.users.create_user("bob", "developer")
        self.client = TestClient(create_app(self.service))

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _generate(self, user_id="alice", **payload):
        body = {"prompt": "Create a function called add", "mode": "generate"}
        body.update(payload)
        return self.client.post("/api/ai/generate", json=body, headers={"X-User-Id": user_id})

    def test_health(self):
        response = self.client.get("/api/ai/health")

        assert response.status_code == 200
        assert response.json() == {"success": True, "data": {"status": "ok"}}

    def test_generate_requires_user(self):
        response = self.client.post("/api/ai/generate", json={"prompt": "hi"})

        assert response.status_code == 401
        assert response.json() == {"success": False, "message": "Authentication required"}

    def test_generate_success(self):
        response = self._generate()

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        data = body["data"]
        assert data["strategy"] == "local-heuristic"
        assert "function add(" in data["response"]
        assert data["tokensUsed"]["total"] == data["tokensUsed"]["input"] + data["tokensUsed"]["output"]
        assert response.headers["X-Token-Limit-Daily"] == "10000"
        assert response.headers["X-Token-Used-Daily"] == str(data["tokensUsed"]["total"])
        assert int(response.headers["X-Token-Remaining-Daily"]) == 10000 - data["tokensUsed"]["total"]

    def test_generate_records_request_metadata(self):
        interaction_id = self._generate().json()["data"]["interactionId"]

        record = self.service.get_interaction(interaction_id, "alice")

        assert record.metadata["ipAddress"] == "testclient"
        assert "userAgent" in record.metadata

    def test_generate_quota_exceeded(self):
        self.users.set_daily_usage("alice", self.ledger.today(), 10000)

        response = self._generate()

        assert response.status_code == 429
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "TOKEN_LIMIT_EXCEEDED"
        assert body["error"]["limit"] == 10000
        assert body["error"]["used"] == 10000
        assert "next_reset" in body["error"]

    def test_generate_would_exceed(self):
        self.users.set_daily_usage("alice", self.ledger.today(), 9990)

        response = self._generate(prompt="p" * 80)

        assert response.status_code == 429
        assert response.json()["error"]["code"] == "REQUEST_WOULD_EXCEED_LIMIT"
        assert response.json()["error"]["estimated_tokens"] == 20

    def test_generate_validation(self):
        assert self._generate(prompt="").status_code == 400
        assert self._generate(mode="debug").status_code == 400

    def test_missing_body_field(self):
        response = self.client.post("/api/ai/generate", json={}, headers={"X-User-Id": "alice"})

        assert response.status_code == 400
        body = response.json()
        assert body["message"] == "Validation failed"
        assert body["errors"][0]["field"].endswith("prompt")

    def test_private_project_forbidden(self):
        project = self.projects.create_project("alice", "Secret")

        response = self._generate(user_id="bob", projectId=project.project_id)

        assert response.status_code == 403
        assert response.json()["message"] == "Access denied to project"

    def test_unknown_project(self):
        response = self._generate(projectId="missing")

        assert response.status_code == 404
        assert response.json()["message"] == "Project not found"

    def test_unknown_user(self):
        assert self._generate(user_id="ghost").status_code == 404

    def test_rate_limit(self):
        limiter = FixedWindowRateLimiter({"developer": 2, "anonymous": 5})
        client = TestClient(create_app(self.service, rate_limiter=limiter))
        headers = {"X-User-Id": "alice"}
        body = {"prompt": "a function sum"}

        statuses = [client.post("/api/ai/generate", json=body, headers=headers).status_code for _ in range(3)]

        assert statuses == [200, 200, 429]
        assert client.post("/api/ai/generate", json=body, headers=headers).json()["message"] == (
            "Too many AI requests, please try again later."
        )

    def test_anonymous_rate_limit(self):
        limiter = FixedWindowRateLimiter({"anonymous": 1})
        client = TestClient(create_app(self.service, rate_limiter=limiter))

        assert client.get("/api/ai/token-usage").status_code == 401
        assert client.get("/api/ai/token-usage").status_code == 429

    def test_history_and_interaction_routes(self):
        interaction_id = self._generate().json()["data"]["interactionId"]
        headers = {"X-User-Id": "alice"}

        listing = self.client.get("/api/ai/history", headers=headers).json()["data"]
        assert listing["pagination"]["total"] == 1
        assert "response" not in listing["interactions"][0]

        detail = self.client.get(f"/api/ai/interactions/{interaction_id}", headers=headers)
        assert detail.status_code == 200
        assert detail.json()["data"]["status"] == "succeeded"
        assert detail.json()["data"]["response"]

        other = self.client.get(f"/api/ai/interactions/{interaction_id}", headers={"X-User-Id": "bob"})
        assert other.status_code == 404

        deleted = self.client.delete(f"/api/ai/interactions/{interaction_id}", headers=headers)
        assert deleted.json() == {"success": True, "message": "Interaction deleted successfully"}
        assert self.client.get(f"/api/ai/interactions/{interaction_id}", headers=headers).status_code == 404

    def test_history_bad_mode(self):
        response = self.client.get("/api/ai/history?mode=debug", headers={"X-User-Id": "alice"})

        assert response.status_code == 400

    def test_stats(self):
        self._generate()

        response = self.client.get("/api/ai/stats?days=7", headers={"X-User-Id": "alice"})

        data = response.json()["data"]
        assert data["total_interactions"] == 1
        assert data["period_days"] == 7
        assert self.client.get("/api/ai/stats?days=0", headers={"X-User-Id": "alice"}).status_code == 400

    def test_project_history(self):
        project = self.projects.create_project("alice", "Shop", is_public=True)
        self._generate(projectId=project.project_id)

        response = self.client.get(
            f"/api/ai/projects/{project.project_id}/history", headers={"X-User-Id": "bob"},
        )

        assert response.status_code == 200
        assert len(response.json()["data"]["interactions"]) == 1

    def test_token_usage(self):
        response = self.client.get("/api/ai/token-usage", headers={"X-User-Id": "alice"})

        data = response.json()["data"]
        assert data["role"] == "developer"
        assert data["daily"] == {"limit": 10000, "used": 0, "remaining": 10000, "requests": 0}

    def test_can_request(self):
        self.users.set_daily_usage("alice", self.ledger.today(), 9990)
        headers = {"X-User-Id": "alice"}

        allowed = self.client.get("/api/ai/can-request", headers=headers).json()["data"]
        denied = self.client.get("/api/ai/can-request", params={"prompt": "p" * 80}, headers=headers).json()["data"]

        assert allowed["allowed"] is True
        assert denied["allowed"] is False
        assert denied["estimatedTokens"] == 20


class TestDefaultRateLimiter:

    def test_scopes_from_config(self):
        limiter = default_rate_limiter(RateLimitConfig(per_role={"developer": 1}, anonymous=2))

        assert limiter.remaining("developer", "x") == 1
        assert limiter.remaining("anonymous", "x") == 2
        assert limiter.remaining("admin", "x") == -1

    @pytest.mark.parametrize("role,limit", [("developer", 100), ("sme", 200), ("admin", 1000)])
    def test_default_caps(self, role, limit):
        assert default_rate_limiter().remaining(role, "x") == limit
