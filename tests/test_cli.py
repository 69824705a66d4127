"""Tests for CLI commands."""

import json
from datetime import date

import pytest
import yaml
from click.testing import CliRunner

from billschedule.cli import main
from billschedule.loader import open_store, save_store
from billschedule.schema import OrganizationSettings
from billschedule.store import InMemoryStore

from tests.conftest import (
    make_charge,
    make_one_time,
    make_product,
    make_subject,
    make_subscription,
)


@pytest.fixture
def cli_runner():
    """Create a Click test runner."""
    return CliRunner()


@pytest.fixture
def ledger_file(tmp_path):
    """Create a temporary ledger with one subject on a monthly product."""
    store = InMemoryStore()
    store.save_product(make_product(linked_subject_ids=["alice"]))
    uniform = make_one_time(invoice_date=date(2024, 6, 1))
    store.save_subject(make_subject(subscriptions=[make_subscription(), uniform]))
    store.save_settings(
        OrganizationSettings(organization_id="org1", default_payment_window_days=30)
    )
    path = tmp_path / "ledger.yaml"
    save_store(store, path)
    return path


class TestLedgerDiscovery:
    """Tests for finding the ledger when --ledger is omitted."""

    def test_env_var(self, cli_runner, ledger_file, monkeypatch):
        monkeypatch.setenv("BILLSCHEDULE_FILE", str(ledger_file))

        result = cli_runner.invoke(main, ["due", "--now", "2024-01-01"])

        assert result.exit_code == 0
        assert "Total: 1 due" in result.output

    def test_current_directory(self, cli_runner, ledger_file, monkeypatch):
        monkeypatch.delenv("BILLSCHEDULE_FILE", raising=False)
        monkeypatch.chdir(ledger_file.parent)

        result = cli_runner.invoke(main, ["scan", "--now", "2024-01-01"])

        assert result.exit_code == 0
        assert len(open_store(ledger_file).charges_for("alice")) == 1

    def test_no_ledger_found(self, cli_runner, tmp_path, monkeypatch):
        monkeypatch.delenv("BILLSCHEDULE_FILE", raising=False)
        monkeypatch.chdir(tmp_path)

        result = cli_runner.invoke(main, ["balance", "alice"])

        assert result.exit_code == 1
        assert "No ledger file found" in result.output


class TestValidateCommand:
    """Tests for the validate command."""

    def test_validate_valid_file(self, cli_runner, ledger_file):
        result = cli_runner.invoke(main, ["validate", "-f", str(ledger_file)])

        assert result.exit_code == 0
        assert "Validation successful" in result.output
        assert "Subjects: 1" in result.output

    def test_validate_invalid_file(self, cli_runner, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.safe_dump({"subjects": [{"id": "", "organization_id": "org1"}]}))

        result = cli_runner.invoke(main, ["validate", "-f", str(path)])

        assert result.exit_code == 1
        assert "Validation failed" in result.output

    def test_validate_reports_legacy(self, cli_runner, tmp_path):
        store = InMemoryStore()
        store.save_subject(make_subject())
        store.save_charge(make_charge(status=None))
        path = tmp_path / "ledger.yaml"
        save_store(store, path)

        result = cli_runner.invoke(main, ["validate", "-f", str(path)])

        assert result.exit_code == 0
        assert "Legacy records found" in result.output


class TestScanCommand:
    """Tests for the scan command."""

    def test_scan_generates_and_saves(self, cli_runner, ledger_file):
        result = cli_runner.invoke(main, ["scan", "-f", str(ledger_file), "--now", "2024-01-01"])

        assert result.exit_code == 0
        assert "Processed: 1" in result.output
        store = open_store(ledger_file)
        assert len(store.charges_for("alice")) == 1
        assert str(store.get_subject("alice").next_receipt_date) == "2024-02-01"

    def test_scan_json(self, cli_runner, ledger_file):
        result = cli_runner.invoke(
            main, ["scan", "-f", str(ledger_file), "--now", "2024-01-01", "--format", "json"]
        )

        assert result.exit_code == 0
        summary = json.loads(result.output)
        assert summary["totalProcessed"] == 1
        assert summary["perItemDetails"][0]["productId"] == "gym"

    def test_scan_twice(self, cli_runner, ledger_file):
        cli_runner.invoke(main, ["scan", "-f", str(ledger_file), "--now", "2024-01-01"])
        result = cli_runner.invoke(main, ["scan", "-f", str(ledger_file), "--now", "2024-01-01"])

        assert result.exit_code == 0
        assert "Processed: 0" in result.output

    def test_dry_run_writes_nothing(self, cli_runner, ledger_file):
        before = ledger_file.read_text()

        result = cli_runner.invoke(
            main, ["scan", "-f", str(ledger_file), "--now", "2024-01-01", "--dry-run"]
        )

        assert result.exit_code == 0
        assert "Would generate 1 charge(s)" in result.output
        assert ledger_file.read_text() == before

    def test_scan_missing_file(self, cli_runner, tmp_path):
        result = cli_runner.invoke(main, ["scan", "-f", str(tmp_path / "nope.yaml")])
        assert result.exit_code != 0


class TestDueCommand:
    """Tests for the due command."""

    def test_lists_due(self, cli_runner, ledger_file):
        result = cli_runner.invoke(main, ["due", "-f", str(ledger_file), "--now", "2024-01-01"])

        assert result.exit_code == 0
        assert "Gym membership" in result.output
        assert "Uniform" not in result.output
        assert "Total: 1 due" in result.output

    def test_nothing_due(self, cli_runner, ledger_file):
        result = cli_runner.invoke(main, ["due", "-f", str(ledger_file), "--now", "2023-06-01"])

        assert result.exit_code == 0
        assert "Nothing due" in result.output


class TestLedgerCommands:
    """Tests for pay, balance, delete-charge and restore-charge."""

    def test_pay_delete_restore(self, cli_runner, ledger_file):
        cli_runner.invoke(main, ["scan", "-f", str(ledger_file), "--now", "2024-01-01"])
        charge_id = open_store(ledger_file).charges_for("alice")[0].id

        result = cli_runner.invoke(
            main, ["pay", "-f", str(ledger_file), "alice", "100", "--charge", charge_id]
        )
        assert result.exit_code == 0
        assert "Recorded 100 as 1 payment(s)" in result.output

        result = cli_runner.invoke(main, ["balance", "-f", str(ledger_file), "alice"])
        assert "Outstanding:       0.00 USD" in result.output

        result = cli_runner.invoke(main, ["delete-charge", "-f", str(ledger_file), charge_id])
        assert result.exit_code == 0
        assert "100.00 from 1 payment(s) converted" in result.output

        result = cli_runner.invoke(main, ["balance", "-f", str(ledger_file), "alice"])
        assert "Available credit:  100.00 USD" in result.output

        result = cli_runner.invoke(main, ["restore-charge", "-f", str(ledger_file), charge_id])
        assert result.exit_code == 0
        assert "Relinked payments: 1" in result.output

    def test_pay_invalid_amount(self, cli_runner, ledger_file):
        result = cli_runner.invoke(main, ["pay", "-f", str(ledger_file), "alice", "lots"])
        assert result.exit_code == 2

    def test_pay_duplicate_reference(self, cli_runner, ledger_file):
        args = ["pay", "-f", str(ledger_file), "alice", "10", "--reference", "gw-1"]
        cli_runner.invoke(main, args)

        result = cli_runner.invoke(main, args)

        assert result.exit_code == 1
        assert "already recorded" in result.output

    def test_delete_unknown_charge(self, cli_runner, ledger_file):
        result = cli_runner.invoke(main, ["delete-charge", "-f", str(ledger_file), "nope"])

        assert result.exit_code == 1
        assert "charge 'nope' not found" in result.output

    def test_balance_unknown_subject(self, cli_runner, ledger_file):
        result = cli_runner.invoke(main, ["balance", "-f", str(ledger_file), "zed"])
        assert result.exit_code == 1


class TestReconcileCommand:
    """Tests for the reconcile command."""

    def test_reconcile_legacy(self, cli_runner, tmp_path):
        store = InMemoryStore()
        store.save_subject(make_subject())
        store.save_charge(make_charge(status=None))
        path = tmp_path / "ledger.yaml"
        save_store(store, path)

        result = cli_runner.invoke(main, ["reconcile", "-f", str(path)])

        assert result.exit_code == 0
        assert "Statuses inferred:  1" in result.output
        assert open_store(path).get_charge("c1").status.value == "active"

    def test_reconcile_clean(self, cli_runner, ledger_file):
        result = cli_runner.invoke(main, ["reconcile", "-f", str(ledger_file)])

        assert result.exit_code == 0
        assert "already up to date" in result.output


class TestForecastCommand:
    """Tests for the forecast command."""

    def test_forecast_table(self, cli_runner, ledger_file):
        result = cli_runner.invoke(
            main, ["forecast", "-f", str(ledger_file), "alice", "gym", "--until", "2024-04-30"]
        )

        assert result.exit_code == 0
        assert "2024-04-01" in result.output
        assert "Total: 4 charges, 400.00" in result.output

    def test_forecast_csv(self, cli_runner, ledger_file):
        result = cli_runner.invoke(
            main,
            ["forecast", "-f", str(ledger_file), "alice", "gym", "--until", "2024-02-29", "--format", "csv"],
        )

        assert result.exit_code == 0
        lines = result.output.strip().splitlines()
        assert lines[0].strip() == "Date,Amount"
        assert len(lines) == 3

    def test_forecast_unknown_product(self, cli_runner, ledger_file):
        result = cli_runner.invoke(
            main, ["forecast", "-f", str(ledger_file), "alice", "pool", "--until", "2024-02-29"]
        )
        assert result.exit_code == 1
