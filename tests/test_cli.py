"""
Tests for the CLI interface.
"""
import os
import tempfile
from unittest.mock import patch

import yaml
from typer.testing import CliRunner

from ai_gen_broker.cli.main import EXIT_CODE_FAIL, EXIT_CODE_OK, EXIT_CODE_QUOTA, app
from ai_gen_broker.core.quota import QuotaLedger
from ai_gen_broker.demo.seed_demo_data import DEMO_PROJECT_ID, DEMO_USER_ID
from ai_gen_broker.storage.repository import InteractionRepository, UserRepository

runner = CliRunner()


class TestCLI:
    """Test CLI commands against a temporary database."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "cli.db")
        self.config_path = os.path.join(self.temp_dir, "broker.yaml")
        with open(self.config_path, 'w', encoding='utf-8') as f:
            yaml.dump({
                "storage": {"db_path": self.db_path},
                "local": {"min_delay_seconds": 0, "max_delay_seconds": 0},
                "logging": {"level": "WARNING"},
            }, f)
        self.env = patch.dict(os.environ)
        self.env.start()
        os.environ.pop("HUGGINGFACE_API_KEY", None)

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        self.env.stop()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _invoke(self, *args):
        return runner.invoke(app, ["--config", self.config_path, *args])

    def test_init(self):
        result = self._invoke("init")

        assert result.exit_code == EXIT_CODE_OK
        assert "Database initialized successfully" in result.output
        assert os.path.exists(self.db_path)

    def test_add_user_and_usage(self):
        added = self._invoke("add-user", "alice", "--role", "sme")
        usage = self._invoke("usage", "alice")

        assert added.exit_code == EXIT_CODE_OK
        assert "Added user alice" in added.output
        assert usage.exit_code == EXIT_CODE_OK
        assert "25,000" in usage.output
        assert "Role: sme" in usage.output

    def test_add_user_defaults_to_lowest_tier(self):
        tiers_path = os.path.join(self.temp_dir, "tiers.yaml")
        with open(tiers_path, 'w', encoding='utf-8') as f:
            yaml.dump({
                "storage": {"db_path": self.db_path},
                "quota": {"tiers": {"standard": 10000, "business": 50000}},
            }, f)

        result = runner.invoke(app, ["--config", tiers_path, "add-user", "alice"])

        assert result.exit_code == EXIT_CODE_OK
        assert UserRepository(self.db_path).get_user("alice").role == "standard"

    def test_add_user_unknown_role(self):
        result = self._invoke("add-user", "alice", "--role", "intern")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Unknown role" in result.output

    def test_add_user_twice(self):
        self._invoke("add-user", "alice")

        result = self._invoke("add-user", "alice")

        assert result.exit_code == EXIT_CODE_FAIL

    def test_usage_unknown_user(self):
        result = self._invoke("usage", "ghost")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "User not found" in result.output

    def test_generate_without_credential_uses_local(self):
        self._invoke("add-user", "alice")

        result = self._invoke("generate", "alice", "Create a component called Navbar")

        assert result.exit_code == EXIT_CODE_OK
        assert "export default Navbar;" in result.output
        assert "strategy=local-heuristic" in result.output

    def test_generate_quota_exit_code(self):
        self._invoke("add-user", "alice")
        users = UserRepository(self.db_path)
        users.set_daily_usage("alice", QuotaLedger(users).today(), 10000)

        result = self._invoke("generate", "alice", "anything")

        assert result.exit_code == EXIT_CODE_QUOTA
        assert "Daily token limit exceeded" in result.output
        assert InteractionRepository(self.db_path).list_for_user("alice")["interactions"] == []

    def test_generate_invalid_mode(self):
        self._invoke("add-user", "alice")

        result = self._invoke("generate", "alice", "hi", "--mode", "debug")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Mode must be one of" in result.output

    def test_history_empty(self):
        self._invoke("add-user", "alice")

        result = self._invoke("history", "alice")

        assert result.exit_code == EXIT_CODE_OK
        assert "No interactions found" in result.output

    def test_history_and_stats_after_generate(self):
        self._invoke("add-user", "alice")
        self._invoke("generate", "alice", "write a function add")
        self._invoke("generate", "alice", "what does this function do", "--mode", "explain")

        history = self._invoke("history", "alice")
        stats = self._invoke("stats", "alice", "--days", "7")

        assert history.exit_code == EXIT_CODE_OK
        assert "2 total" in history.output
        assert stats.exit_code == EXIT_CODE_OK
        assert "AI Usage Stats" in stats.output
        assert "Interactions: 2" in stats.output
        assert "100.0%" in stats.output

    def test_stats_invalid_window(self):
        self._invoke("add-user", "alice")

        result = self._invoke("stats", "alice", "--days", "0")

        assert result.exit_code == EXIT_CODE_FAIL

    def test_seed_demo_and_generate_with_project(self):
        seeded = self._invoke("seed-demo")
        again = self._invoke("seed-demo")
        result = self._invoke("generate", DEMO_USER_ID, "Explain the App component", "-m", "explain", "-p", DEMO_PROJECT_ID)

        assert seeded.exit_code == EXIT_CODE_OK
        assert again.exit_code == EXIT_CODE_OK
        assert DEMO_PROJECT_ID in seeded.output
        assert result.exit_code == EXIT_CODE_OK
        [record] = InteractionRepository(self.db_path).list_for_user(DEMO_USER_ID)["interactions"]
        assert sorted(f.filename for f in record.context_files) == ["src/App.jsx", "src/TodoList.jsx"]

    def test_bad_config(self):
        bad_path = os.path.join(self.temp_dir, "bad.yaml")
        with open(bad_path, 'w', encoding='utf-8') as f:
            yaml.dump({"billing": {"plan": "gold"}}, f)

        result = runner.invoke(app, ["--config", bad_path, "init"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Error loading configuration" in result.output

    def test_missing_config(self):
        result = runner.invoke(app, ["--config", os.path.join(self.temp_dir, "nope.yaml"), "init"])

        assert result.exit_code == EXIT_CODE_FAIL
