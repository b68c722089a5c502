"""
Unit tests for exchange rates and minor-unit conversion.
"""

import pytest
import json
from decimal import Decimal

from accrual_ledger import (
    ExchangeRates, RateTable, convert,
    InvalidAmount, UnknownCurrency, PersistenceError,
)
from accrual_ledger.rates import DEFAULT_RATES, default_rates

from tests.conftest import T0


RATES = default_rates(T0)


class TestConvert:
    """round_half_up(amount / rate_from * rate_to), never below one minor unit."""

    def test_same_currency_passes_through(self):
        assert convert(12345, "RUB", "rub", None) == 12345

    def test_rub_to_usd(self):
        """100.00 RUB at 0.0108 is 1.08 USD."""
        assert convert(10000, "RUB", "USD", RATES) == 108

    def test_usd_to_rub_rounds_half_up(self):
        """0.01 USD is 0.9259... RUB, i.e. 92.59 kopecks, rounded to 93."""
        assert convert(1, "USD", "RUB", RATES) == 93

    def test_exact_half_rounds_up(self):
        rates = ExchangeRates.create("RUB", {"XXX": "0.5"}, T0)
        assert convert(1, "RUB", "XXX", rates) == 1
        assert convert(3, "RUB", "XXX", rates) == 2

    def test_minimum_one_minor_unit(self):
        """A kopeck converts to 0.0108 cents, which is floored up to 1."""
        assert convert(1, "RUB", "USD", RATES) == 1

    def test_cross_rate(self):
        """EUR -> KZT goes through the base: 1 EUR = 100 RUB = 600 KZT."""
        assert convert(100, "EUR", "KZT", RATES) == 60000

    def test_unknown_currency(self):
        with pytest.raises(UnknownCurrency):
            convert(100, "RUB", "GBP", RATES)

    def test_no_table(self):
        with pytest.raises(UnknownCurrency):
            convert(100, "RUB", "USD", None)

    @pytest.mark.parametrize("amount", [0, -5, 1.5, True, "100"])
    def test_invalid_amount(self, amount):
        with pytest.raises(InvalidAmount):
            convert(amount, "RUB", "USD", RATES)


class TestExchangeRates:
    """The immutable rate table."""

    def test_base_is_implied(self):
        rates = ExchangeRates.create("rub", {"usd": "0.0108"}, T0)
        assert rates.base == "RUB"
        assert rates.rate("RUB") == Decimal(1)
        assert rates.rate("usd") == Decimal("0.0108")

    def test_non_positive_rate(self):
        with pytest.raises(InvalidAmount):
            ExchangeRates.create("RUB", {"USD": 0}, T0)

    def test_with_rate(self):
        updated = RATES.with_rate("gbp", "0.0095", T0)
        assert updated.rate("GBP") == Decimal("0.0095")
        with pytest.raises(UnknownCurrency):
            RATES.rate("GBP")

    def test_dict_layout(self):
        data = RATES.to_dict()
        assert data['base'] == "RUB"
        assert data['pairs']['USD'] == "0.0108"
        assert data['pairs']['KZT'] == "6"
        assert data['updatedAt'] == T0.isoformat()
        assert ExchangeRates.from_dict(data) == RATES


class TestRateTable:
    """The rate file on disk."""

    def test_ensure_writes_defaults(self, tmp_path, clock):
        table = RateTable(tmp_path / "rates.json", clock=clock)
        assert not table.exists()
        rates = table.ensure()
        assert table.exists()
        assert rates.pairs == DEFAULT_RATES

    def test_ensure_keeps_existing(self, rate_table):
        rate_table.set_rate("USD", "0.02")
        assert rate_table.ensure().rate("USD") == Decimal("0.02")

    def test_set_rate_persists(self, rate_table, clock):
        clock.advance(hours=1)
        rate_table.set_rate(" gbp ", "0.0095")
        data = json.loads(rate_table.path.read_text())
        assert data['pairs']['GBP'] == "0.0095"
        assert rate_table.load().updated_at == clock()

    def test_set_rate_rejects_non_positive(self, rate_table):
        with pytest.raises(InvalidAmount):
            rate_table.set_rate("USD", "-1")
        assert rate_table.load().rate("USD") == Decimal("0.0108")

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(UnknownCurrency):
            RateTable(tmp_path / "none.json").load()

    def test_load_corrupt_file(self, tmp_path):
        path = tmp_path / "rates.json"
        path.write_text("[")
        with pytest.raises(PersistenceError):
            RateTable(path).load()

    def test_edits_are_seen_without_restart(self, rate_table):
        """Another session editing the file changes the next conversion."""
        assert rate_table.convert(10000, "RUB", "USD") == 108
        other_session = RateTable(rate_table.path)
        other_session.set_rate("USD", "0.02")
        assert rate_table.convert(10000, "RUB", "USD") == 200

    def test_convert_same_currency_needs_no_file(self, tmp_path):
        assert RateTable(tmp_path / "none.json").convert(5, "RUB", "RUB") == 5
