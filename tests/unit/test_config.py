"""
Unit tests for LedgerConfig.
"""

import pytest
from datetime import timedelta
from decimal import Decimal
from pathlib import Path

from accrual_ledger import LedgerConfig, LONG_WINDOW


class TestDefaults:
    """Settings with nothing configured."""

    def test_defaults(self):
        config = LedgerConfig()
        assert config.db_file == Path("data/bank.json")
        assert config.rates_file == Path("data/rates.json")
        assert config.backups_dir == Path("data/backups")
        assert config.reports_dir == Path("reports")
        assert config.accrual_window == LONG_WINDOW
        assert config.refund_factor == Decimal("0.8")
        assert config.max_items is None
        assert config.strict_persistence is True
        assert config.auto_backup is False
        assert config.bcrypt_rounds == 12

    def test_with_data_dir_rederives_files(self, tmp_path):
        config = LedgerConfig().with_data_dir(tmp_path)
        assert config.db_file == tmp_path / "bank.json"
        assert config.backups_dir == tmp_path / "backups"

    def test_explicit_file_wins(self):
        assert LedgerConfig(db_file="/srv/ledger.json").db_file == Path("/srv/ledger.json")

    def test_invalid_window(self):
        with pytest.raises(ValueError):
            LedgerConfig(accrual_window=timedelta(0))

    def test_invalid_rounds(self):
        with pytest.raises(ValueError):
            LedgerConfig(bcrypt_rounds=3)


class TestFromEnv:
    """ACCRUAL_LEDGER_* overrides."""

    def test_empty_environment(self):
        assert LedgerConfig.from_env({}) == LedgerConfig()

    def test_overrides(self):
        config = LedgerConfig.from_env({
            "ACCRUAL_LEDGER_DATA_DIR": "/var/ledger",
            "ACCRUAL_LEDGER_WINDOW_SECONDS": "600",
            "ACCRUAL_LEDGER_REFUND_FACTOR": "0.5",
            "ACCRUAL_LEDGER_MAX_ITEMS": "20",
            "ACCRUAL_LEDGER_AUTO_BACKUP": "yes",
            "ACCRUAL_LEDGER_STRICT_PERSISTENCE": "off",
            "ACCRUAL_LEDGER_BCRYPT_ROUNDS": "4",
            "ACCRUAL_LEDGER_VERBOSE": "1",
        })
        assert config.db_file == Path("/var/ledger/bank.json")
        assert config.accrual_window == timedelta(minutes=10)
        assert config.refund_factor == Decimal("0.5")
        assert config.max_items == 20
        assert config.auto_backup is True
        assert config.strict_persistence is False
        assert config.bcrypt_rounds == 4
        assert config.verbose is True

    def test_blank_values_are_ignored(self):
        assert LedgerConfig.from_env({"ACCRUAL_LEDGER_MAX_ITEMS": "  "}).max_items is None

    @pytest.mark.parametrize("key,value", [
        ("ACCRUAL_LEDGER_AUTO_BACKUP", "maybe"),
        ("ACCRUAL_LEDGER_REFUND_FACTOR", "lots"),
        ("ACCRUAL_LEDGER_WINDOW_SECONDS", "soon"),
    ])
    def test_unparseable(self, key, value):
        with pytest.raises(ValueError):
            LedgerConfig.from_env({key: value})
