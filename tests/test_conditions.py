from datetime import datetime, timedelta, timezone
from itertools import product

import pytest

from vfr.conditions import SegmentCondition, calculate_confidence, meets_minimum_condition, worse_condition

ORDER = [SegmentCondition.GOOD, SegmentCondition.MARGINAL, SegmentCondition.POOR, SegmentCondition.UNKNOWN]


def test_severity_order():
    assert [item.severity for item in ORDER] == [0, 1, 2, 3]
    assert SegmentCondition.GOOD < SegmentCondition.MARGINAL < SegmentCondition.POOR < SegmentCondition.UNKNOWN


@pytest.mark.parametrize("a,b", list(product(ORDER, repeat=2)))
def test_worse_condition_is_a_commutative_maximum(a: SegmentCondition, b: SegmentCondition):
    result = worse_condition(a, b)
    assert result == worse_condition(b, a)
    assert result == ORDER[max(ORDER.index(a), ORDER.index(b))]


def test_worse_condition_is_associative():
    for a, b, c in product(ORDER, repeat=3):
        assert worse_condition(worse_condition(a, b), c) == worse_condition(a, worse_condition(b, c))


def test_minimum_condition_membership():
    assert meets_minimum_condition(SegmentCondition.GOOD, "good")
    assert not meets_minimum_condition(SegmentCondition.MARGINAL, "good")
    assert meets_minimum_condition(SegmentCondition.MARGINAL, "marginal")
    assert not meets_minimum_condition(SegmentCondition.POOR, "marginal")
    assert not meets_minimum_condition(SegmentCondition.UNKNOWN, "marginal")


def test_marginal_minimum_accepts_a_superset_of_good_minimum():
    for condition in ORDER:
        if meets_minimum_condition(condition, "good"):
            assert meets_minimum_condition(condition, "marginal")


def test_confidence_buckets():
    now = datetime(2025, 6, 1, 12, tzinfo=timezone.utc)
    assert calculate_confidence(now + timedelta(hours=6), now) == "high"
    assert calculate_confidence(now + timedelta(hours=24), now) == "high"
    assert calculate_confidence(now + timedelta(hours=48), now) == "medium"
    assert calculate_confidence(now + timedelta(hours=72), now) == "medium"
    assert calculate_confidence(now + timedelta(hours=73), now) == "low"


def test_condition_serializes_as_plain_string():
    assert str(SegmentCondition.MARGINAL) == "marginal"
    assert SegmentCondition("poor") is SegmentCondition.POOR
