import datetime

from partition_advisor.schemas import ColumnProfile
from partition_advisor.selector import (
    is_better_candidate, select_candidate, selected_column_warnings, usage_is_similar,
)


def profile(name, range_days=400, null_pct=0.0, has_time=False, usage=0, quality=False, ordinal=1):
    low = datetime.datetime(2020, 1, 1)
    return ColumnProfile(
        column_name=name,
        data_type="DATE",
        ordinal=ordinal,
        min_value=low,
        max_value=low + datetime.timedelta(days=range_days),
        range_days=range_days,
        total_count=100,
        non_null_count=100 - int(null_pct),
        null_count=int(null_pct),
        null_percentage=null_pct,
        has_time_component=has_time,
        usage_score=usage,
        has_quality_issue=quality,
    )


class TestUsageSimilarity:
    def test_within_ratio(self):
        assert usage_is_similar(10, 8, 0.8)
        assert not usage_is_similar(10, 7, 0.8)

    def test_zero_scores_are_similar(self):
        assert usage_is_similar(0, 0, 0.8)


class TestPrecedence:
    def test_quality_flag_beats_everything(self, config):
        clean = profile("CLEAN", range_days=10, null_pct=20.0, has_time=True)
        flagged = profile("FLAGGED", range_days=5000, usage=100, quality=True)
        assert is_better_candidate(clean, flagged, config)
        assert not is_better_candidate(flagged, clean, config)

    def test_null_margin(self, config):
        sparse = profile("SPARSE", null_pct=30.0, usage=100)
        dense = profile("DENSE", null_pct=5.0)
        assert is_better_candidate(dense, sparse, config)

    def test_null_difference_within_margin_is_ignored(self, config):
        a = profile("A", null_pct=0.0, range_days=100)
        b = profile("B", null_pct=9.0, range_days=500)
        assert is_better_candidate(b, a, config)

    def test_pure_date_beats_time_component(self, config):
        with_time = profile("TS", has_time=True, usage=50, range_days=3000)
        date_only = profile("D", range_days=100)
        assert is_better_candidate(date_only, with_time, config)

    def test_usage_when_not_similar(self, config):
        assert is_better_candidate(profile("USED", usage=18, range_days=10), profile("WIDE", usage=3), config)

    def test_range_when_usage_similar(self, config):
        assert is_better_candidate(profile("WIDE", usage=9, range_days=900), profile("NARROW", usage=10), config)


class TestSelectCandidate:
    def test_empty(self, config):
        assert select_candidate([], config) is None

    def test_tie_keeps_earlier_column(self, config):
        first = profile("FIRST", ordinal=1)
        second = profile("SECOND", ordinal=2)
        assert select_candidate([first, second], config).column_name == "FIRST"

    def test_flagged_column_loses_to_lower_usage(self, config):
        x = profile("X", usage=15, range_days=36500, quality=True)
        y = profile("Y", usage=0, range_days=400)
        assert select_candidate([x, y], config).column_name == "Y"

    def test_result_is_deterministic(self, config):
        profiles = [profile("A", usage=3), profile("B", usage=15), profile("C", usage=15, range_days=900)]
        assert select_candidate(profiles, config) == select_candidate(profiles, config)
        assert select_candidate(profiles, config).column_name == "C"


class TestSelectedColumnWarnings:
    def test_clean_column(self, config):
        assert selected_column_warnings(profile("D"), config) == []

    def test_nulls_below_critical(self, config):
        warnings = selected_column_warnings(profile("D", null_pct=25.0), config)
        assert len(warnings) == 1
        assert not warnings[0].critical
        assert "25.0% NULL values" in warnings[0].description

    def test_critical_nulls(self, config):
        warnings = selected_column_warnings(profile("D", null_pct=40.0), config)
        assert warnings[0].critical

    def test_time_component(self, config):
        warnings = selected_column_warnings(profile("TS", has_time=True), config)
        assert len(warnings) == 1
        assert "TRUNC(TS)" in warnings[0].remedy
