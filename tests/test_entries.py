"""Tests for CSV entry loading."""

from __future__ import annotations

import pytest

from merkle_aggregation.entries import load_entries, parse_entry_rows
from merkle_aggregation.exceptions import EntryValidationError
from merkle_aggregation.models import Entry


class TestLoadEntries:
    def test_reference_file(self, csv_file, reference_entries) -> None:
        path = csv_file(["dxGaEAii;11888,41163", "MBlfbBGI;67823,18651"])
        assert load_entries(path) == reference_entries

    def test_accepts_str_path(self, csv_file) -> None:
        path = csv_file(["alice;1,2"])
        assert load_entries(str(path)) == [Entry("alice", (1, 2))]

    def test_large_balances_kept_exact(self, csv_file) -> None:
        big = str(2**200 + 1)
        path = csv_file([f"whale;{big},0"])
        assert load_entries(path)[0].balances == (2**200 + 1, 0)

    def test_whitespace_around_values(self, csv_file) -> None:
        path = csv_file(["  bob ; 3, 4 "])
        assert load_entries(path) == [Entry("bob", (3, 4))]

    def test_missing_column(self, csv_file) -> None:
        path = csv_file(["alice;1"], header="name;balances")
        with pytest.raises(EntryValidationError, match="missing column"):
            load_entries(path)

    def test_negative_balance_names_line(self, csv_file) -> None:
        path = csv_file(["alice;1,2", "bob;-5,2"])
        with pytest.raises(EntryValidationError, match=r":3: balances"):
            load_entries(path)

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(OSError):
            load_entries(tmp_path / "absent.csv")

    def test_header_only(self, csv_file) -> None:
        assert load_entries(csv_file([])) == []


class TestParseEntryRows:
    def test_rows(self) -> None:
        rows = [{"username": "a", "balances": "1"}, {"username": "b", "balances": "2"}]
        assert parse_entry_rows(rows) == [Entry("a", (1,)), Entry("b", (2,))]

    @pytest.mark.parametrize(
        "row",
        [
            {"username": "", "balances": "1"},
            {"username": "a", "balances": ""},
            {"username": "a"},
        ],
    )
    def test_missing_values(self, row) -> None:
        with pytest.raises(EntryValidationError, match="missing username or balances"):
            parse_entry_rows([row], source="input.csv")

    @pytest.mark.parametrize("raw", ["1.5", "0x10", "abc", "1,,2", "١٢"])
    def test_non_decimal_balances(self, raw) -> None:
        with pytest.raises(EntryValidationError, match="non-negative integers"):
            parse_entry_rows([{"username": "a", "balances": raw}])
