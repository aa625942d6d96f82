"""
Property-based tests for the vesting schedule calculators.

Linear and tranche vested counts must be monotone in time, bounded by the
plan size, and exact at their boundaries.
"""

import pytest
from hypothesis import assume, given, settings, strategies as st

from nftvest.core.vesting_exceptions import InvalidScheduleError
from nftvest.core.vesting.schedules import (
    TrancheSchedule,
    get_linear_template,
    linear_vested_count,
    list_linear_templates,
    tranche_vested_count,
)

pytestmark = pytest.mark.property

T0 = 1_700_000_000
DAY = 86_400

template_ids = st.sampled_from([template.template_id for template in list_linear_templates()])
totals = st.integers(min_value=1, max_value=10_000)
offsets = st.integers(min_value=-30 * DAY, max_value=800 * DAY)


@st.composite
def tranche_entries(draw, max_total=50):
    """Strictly increasing timestamps with non-decreasing counts."""
    size = draw(st.integers(min_value=1, max_value=8))
    gaps = draw(st.lists(st.integers(min_value=1, max_value=90 * DAY), min_size=size, max_size=size))
    increments = draw(st.lists(st.integers(min_value=0, max_value=max_total), min_size=size, max_size=size))
    timestamps, counts = [], []
    now, total = T0, 0
    for gap, inc in zip(gaps, increments):
        now += gap
        total += inc
        timestamps.append(now)
        counts.append(total)
    return list(zip(timestamps, counts))


class TestLinearProperties:
    @given(template_id=template_ids, total=totals, first=offsets, second=offsets)
    @settings(max_examples=300)
    def test_monotone_in_time(self, template_id, total, first, second):
        template = get_linear_template(template_id)
        earlier, later = sorted((first, second))
        assert linear_vested_count(template, T0, total, T0 + earlier) <= linear_vested_count(
            template, T0, total, T0 + later
        )

    @given(template_id=template_ids, total=totals, offset=offsets)
    @settings(max_examples=300)
    def test_bounded(self, template_id, total, offset):
        vested = linear_vested_count(get_linear_template(template_id), T0, total, T0 + offset)
        assert 0 <= vested <= total

    @given(template_id=template_ids, total=totals, offset=st.integers(min_value=0, max_value=10 * 365 * DAY))
    def test_complete_after_duration(self, template_id, total, offset):
        template = get_linear_template(template_id)
        assert linear_vested_count(template, T0, total, T0 + template.duration + offset) == total

    @given(template_id=template_ids, total=totals, offset=st.integers(min_value=1, max_value=30 * DAY))
    def test_nothing_before_cliff(self, template_id, total, offset):
        template = get_linear_template(template_id)
        assume(template.cliff > 0)
        assert linear_vested_count(template, T0, total, T0 + template.cliff - offset) == 0

    @given(total=totals, offset=st.integers(min_value=0, max_value=180 * DAY - 1))
    def test_sliced_release_is_constant_within_a_slice(self, total, offset):
        template = get_linear_template(2)
        slice_start = offset - offset % template.slice_period
        assert linear_vested_count(template, T0, total, T0 + offset) == linear_vested_count(
            template, T0, total, T0 + slice_start
        )


class TestTrancheProperties:
    @given(entries=tranche_entries(), first=offsets, second=offsets)
    @settings(max_examples=300)
    def test_monotone_and_bounded(self, entries, first, second):
        schedule = TrancheSchedule.build(entries, entries[-1][1])
        earlier, later = sorted((first, second))
        low = tranche_vested_count(schedule, T0 + earlier)
        high = tranche_vested_count(schedule, T0 + later)
        assert 0 <= low <= high <= schedule.final_count

    @given(entries=tranche_entries())
    def test_exact_at_each_tranche(self, entries):
        schedule = TrancheSchedule.build(entries, entries[-1][1])
        for timestamp, count in entries:
            assert tranche_vested_count(schedule, timestamp) == count
            assert tranche_vested_count(schedule, timestamp - 1) <= count

    @given(entries=tranche_entries(), extra=st.integers(min_value=1, max_value=100))
    def test_final_count_above_total_rejected(self, entries, extra):
        final = entries[-1][1]
        assume(final > 0)
        with pytest.raises(InvalidScheduleError):
            TrancheSchedule.build(entries, final - 1)
        assert TrancheSchedule.build(entries, final + extra).final_count == final
