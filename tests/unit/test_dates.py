from __future__ import annotations

from datetime import date, datetime

import pandas as pd
import pytest

from readiness_report.excel.dates import EXCEL_EPOCH, normalize_date, to_serial


@pytest.mark.parametrize("value", [None, "", "   ", "TBD", "tbd", "N/A", "n/a"])
def test_no_date_tokens(value):
    assert normalize_date(value) is None


@pytest.mark.parametrize("day", [date(1900, 3, 1), date(2000, 2, 29), date(2024, 1, 1), date(2060, 6, 30)])
def test_serial_round_trip(day):
    serial = to_serial(day)
    assert serial < 60000
    assert normalize_date(serial).date() == day
    assert normalize_date(str(int(serial))).date() == day


def test_serial_fraction_is_discarded():
    assert normalize_date(45292.75) == datetime(2024, 1, 1)
    assert normalize_date("45292.5") == datetime(2024, 1, 1)


def test_serial_out_of_range():
    assert normalize_date(0) is None
    assert normalize_date(70000) is None


def test_epoch():
    assert EXCEL_EPOCH == datetime(1899, 12, 30)
    assert normalize_date(1) == datetime(1899, 12, 31)


def test_iso_format():
    assert normalize_date("2024-01-01") == datetime(2024, 1, 1)


def test_month_first_preferred():
    assert normalize_date("01/02/2024") == datetime(2024, 1, 2)
    assert normalize_date("1/2/2024") == datetime(2024, 1, 2)


def test_day_first_when_month_first_impossible():
    assert normalize_date("13/01/2024") == datetime(2024, 1, 13)


def test_general_fallback():
    assert normalize_date("Jan 5, 2024") == datetime(2024, 1, 5)


def test_unparseable_is_none():
    assert normalize_date("next sprint") is None
    assert normalize_date(True) is None


def test_native_values_pass_through():
    assert normalize_date(datetime(2024, 3, 4, 15, 30)) == datetime(2024, 3, 4, 15, 30)
    assert normalize_date(date(2024, 3, 4)) == datetime(2024, 3, 4)
    assert normalize_date(pd.Timestamp("2024-03-04")) == datetime(2024, 3, 4)
    assert normalize_date(pd.NaT) is None
    assert normalize_date(float("nan")) is None
