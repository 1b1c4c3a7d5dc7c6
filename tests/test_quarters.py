import pytest

from sales_forecast.quarters import QUARTERS, build_quarters, get_quarter
from sales_forecast.exceptions import RangeError

def test_quarters_partition_the_year():
    weeks = [week for quarter in QUARTERS for week in quarter.weeks]
    assert weeks == list(range(1, 53))
    assert [q.name for q in QUARTERS] == ["Q1", "Q2", "Q3", "Q4"]
    assert all(len(q) == 13 for q in QUARTERS)

def test_get_quarter():
    assert get_quarter("Q3").week_range == (27, 39)
    assert get_quarter(" q4 ").week_range == (40, 52)

def test_get_unknown_quarter():
    with pytest.raises(RangeError, match="Unknown quarter"):
        get_quarter("Q5")

@pytest.mark.parametrize("windows", [
    {"Q1": (1, 26), "Q2": (20, 52)},  # overlap
    {"Q1": (1, 13), "Q2": (15, 52)},  # gap
    {"Q1": (1, 13), "Q2": (14, 60)},  # past the end of the year
])
def test_invalid_partitions(windows):
    with pytest.raises(RangeError):
        build_quarters(windows)
