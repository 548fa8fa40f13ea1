"""
Tests for the CLI interface.
"""
import os
import shutil
import tempfile
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
import yaml
from typer.testing import CliRunner

from bill_guard.cli.main import app, EXIT_CODE_PASS, EXIT_CODE_FAIL, _parse_date, _parse_months
from bill_guard.config.loader import default_config
from bill_guard.core.clock import DeterministicClock
from bill_guard.engine import build_engine
from bill_guard.storage.repository import LedgerRepository

runner = CliRunner()


class TestCLI:
    """Test CLI commands against an in-memory ledger."""

    def setup_method(self):
        self.repository = LedgerRepository(":memory:")
        self.clock = DeterministicClock(datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc))
        self.config = default_config("admin")
        self.patcher = patch(
            'bill_guard.cli.main.get_engine',
            side_effect=lambda clock=None: build_engine(
                self.config, repository=self.repository, clock=clock or self.clock
            )
        )
        self.patcher.start()

    def teardown_method(self):
        self.patcher.stop()
        self.repository.close()

    def _invoke(self, *args):
        return runner.invoke(app, list(args))

    def _create_cycle(self):
        self._invoke("credit", "alice", "1000")
        return self._invoke("cycle", "create", "--owner", "alice", "--months", "3", "--amount", "1000")

    def test_credit_and_balance(self):
        result = self._invoke("credit", "alice", "250.5")
        assert result.exit_code == EXIT_CODE_PASS
        assert "250.50" in result.output

        result = self._invoke("balance", "alice")
        assert result.exit_code == EXIT_CODE_PASS
        assert "alice: 250.50" in result.output

    def test_create_cycle(self):
        result = self._create_cycle()

        assert result.exit_code == EXIT_CODE_PASS
        assert "Cycle 1 created" in result.output
        assert "Operating fee: 20.00" in result.output
        assert "Available for bills: 980.00" in result.output

    def test_create_cycle_without_funds_fails(self):
        result = self._invoke("cycle", "create", "--owner", "bob", "--months", "3", "--amount", "10")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "TRANSFER_FAILED" in result.output

    def test_invalid_duration_fails(self):
        self._invoke("credit", "alice", "1000")
        result = self._invoke("cycle", "create", "--owner", "alice", "--months", "13", "--amount", "10")

        assert result.exit_code == EXIT_CODE_FAIL

    def test_add_recurring_bill_by_day(self):
        self._create_cycle()

        result = self._invoke(
            "bill", "add", "1", "--caller", "alice", "--name", "Rent",
            "--amount", "100", "--day", "15", "--recurring"
        )

        assert result.exit_code == EXIT_CODE_PASS
        assert "Bill 1 added" in result.output
        assert "First due: 2026-10-15 12:00 UTC" in result.output
        assert "Months: 10,11,12" in result.output
        assert "Remaining after allocation: 680.00" in result.output

    def test_add_bill_by_date(self):
        self._create_cycle()

        result = self._invoke(
            "bill", "add", "1", "--caller", "alice", "--name", "Insurance",
            "--amount", "45", "--due", "2026-10-20", "--category", "insurance"
        )

        assert result.exit_code == EXIT_CODE_PASS
        assert "First due: 2026-10-20 12:00 UTC" in result.output

    def test_add_bill_needs_exactly_one_date_option(self):
        self._create_cycle()

        both = self._invoke(
            "bill", "add", "1", "--caller", "alice", "--name", "Rent",
            "--amount", "100", "--day", "15", "--due", "2026-10-15"
        )
        neither = self._invoke("bill", "add", "1", "--caller", "alice", "--name", "Rent", "--amount", "100")

        assert both.exit_code == EXIT_CODE_FAIL
        assert neither.exit_code == EXIT_CODE_FAIL

    def test_add_bill_too_soon_fails(self):
        self._create_cycle()

        result = self._invoke(
            "bill", "add", "1", "--caller", "alice", "--name", "Soon",
            "--amount", "10", "--due", "2026-10-03"
        )

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Error" in result.output

    def test_over_allocation_blocked_unless_skipped(self):
        self._create_cycle()
        args = ["bill", "add", "1", "--caller", "alice", "--name", "Car", "--amount", "990", "--due", "2026-10-20"]

        blocked = self._invoke(*args)
        assert blocked.exit_code == EXIT_CODE_FAIL
        assert "INSUFFICIENT_FUNDS" in blocked.output

        forced = self._invoke(*args, "--skip-allocation-check")
        assert forced.exit_code == EXIT_CODE_PASS

    def test_owner_pay_before_due_day_fails(self):
        self._create_cycle()
        self._invoke("bill", "add", "1", "--caller", "alice", "--name", "Gym", "--amount", "30", "--due", "2026-10-20")

        result = self._invoke("bill", "pay", "1", "--caller", "alice")

        assert result.exit_code == EXIT_CODE_FAIL
        assert "BILL_NOT_DUE_YET" in result.output

    def test_admin_pay(self):
        self._create_cycle()
        self._invoke("bill", "add", "1", "--caller", "alice", "--name", "Gym", "--amount", "30", "--due", "2026-10-20")

        result = self._invoke("bill", "pay", "1", "--caller", "admin", "--admin")

        assert result.exit_code == EXIT_CODE_PASS
        assert "Paid 30.00 for bill 1" in result.output
        assert "Bill is fully paid" in result.output

    def test_cancel_bill(self):
        self._create_cycle()
        self._invoke("bill", "add", "1", "--caller", "alice", "--name", "Gym", "--amount", "30", "--due", "2026-10-20")

        result = self._invoke("bill", "cancel", "1", "--caller", "alice")

        assert result.exit_code == EXIT_CODE_PASS
        assert "Cancelled 1 bill(s)" in result.output
        assert self._invoke("bill", "list", "1").output.strip() == "No bills in this cycle."

    def test_skip_bills(self):
        self._create_cycle()
        self._invoke(
            "bill", "add", "1", "--caller", "alice", "--name", "Rent",
            "--amount", "100", "--day", "15", "--recurring"
        )
        self._invoke("bill", "add", "1", "--caller", "alice", "--name", "Gym", "--amount", "30", "--due", "2026-10-20")

        result = self._invoke("bill", "skip", "1", "2", "--caller", "alice")

        assert result.exit_code == EXIT_CODE_PASS
        assert "Skipped 2 bill(s)" in result.output
        assert "Bill 1: next due 2026-11-14 12:00 UTC" in result.output
        assert "Removed 1 one-time bill(s)" in result.output

        again = self._invoke("bill", "skip", "1", "--caller", "alice")
        assert again.exit_code == EXIT_CODE_FAIL
        assert "ADJUSTMENT_LIMIT_REACHED" in again.output

    def test_keeper_run_pays_due_bills(self):
        self._create_cycle()
        self._invoke(
            "bill", "add", "1", "--caller", "alice", "--name", "Rent",
            "--amount", "100", "--day", "15", "--recurring"
        )

        result = self._invoke("keeper", "run", "--now", "2026-10-15T12:00:00")

        assert result.exit_code == EXIT_CODE_PASS
        assert "Paid: 1" in result.output
        assert "Failed: 0" in result.output

        again = self._invoke("keeper", "run", "--now", "2026-10-15T18:00:00")
        assert "Paid: 0" in again.output

    def test_keeper_run_rejects_bad_time(self):
        result = self._invoke("keeper", "run", "--now", "tomorrow")

        assert result.exit_code == EXIT_CODE_FAIL

    def test_end_cycle(self):
        self._create_cycle()
        self._invoke("bill", "add", "1", "--caller", "alice", "--name", "Gym", "--amount", "100", "--due", "2026-10-20")
        self._invoke("bill", "pay", "1", "--caller", "admin", "--admin")

        early = self._invoke("cycle", "end", "1", "--caller", "alice")
        assert early.exit_code == EXIT_CODE_FAIL

        result = self._invoke("cycle", "end", "1", "--caller", "admin", "--force")
        assert result.exit_code == EXIT_CODE_PASS
        assert "Surplus returned: 880.00" in result.output

    def test_status(self):
        self._create_cycle()

        result = self._invoke("status")

        assert result.exit_code == EXIT_CODE_PASS
        assert "Cycles: 1 (1 active)" in result.output
        assert "Custody balance: 980.00" in result.output

    def test_events(self):
        self._create_cycle()

        result = self._invoke("events", "--kind", "cycle_created")

        assert result.exit_code == EXIT_CODE_PASS
        assert "Ledger Events" in result.output


class TestInitCommand:
    """Test database initialization from a config file."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_init_creates_database(self):
        db_path = os.path.join(self.temp_dir, "ledger.db")
        config_path = os.path.join(self.temp_dir, "config.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump({"engine": {"admin": "treasurer"}, "storage": {"db_path": db_path}}, f)

        result = runner.invoke(app, ["--config", config_path, "init"])

        assert result.exit_code == EXIT_CODE_PASS
        assert os.path.exists(db_path)

    def test_init_with_invalid_config_fails(self):
        config_path = os.path.join(self.temp_dir, "config.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump({"engine": {"admin": "treasurer", "fee_percentage": 900}}, f)

        result = runner.invoke(app, ["--config", config_path, "init"])

        assert result.exit_code == EXIT_CODE_FAIL


class TestArgumentParsing:
    """Test date and month parsing helpers."""

    def test_dates_are_due_at_noon_utc(self):
        expected = int(datetime(2026, 10, 20, 12, tzinfo=timezone.utc).timestamp())
        assert _parse_date("2026-10-20") == expected

    def test_bad_date(self):
        with pytest.raises(ValueError, match="YYYY-MM-DD"):
            _parse_date("20/10/2026")

    def test_months(self):
        assert _parse_months("10, 11,12") == (10, 11, 12)
        assert _parse_months(None) == ()

    def test_bad_months(self):
        with pytest.raises(ValueError):
            _parse_months("oct,nov")
