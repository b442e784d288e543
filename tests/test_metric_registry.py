from dataclasses import fields

from postpulse.aggregation.contribution import DeltaVector
from postpulse.core.metric_registry import DELTA_METRICS, TOTAL_COLUMNS, MetricType
from postpulse.models.analysis_models import KPITotals
from postpulse.models.summary_models import MonthlySummary, SummaryView


def test_every_delta_field_has_a_registered_metric():
    assert [f.name for f in fields(DeltaVector)] == list(DELTA_METRICS)


def test_total_columns_exist_on_summary_models():
    for column in TOTAL_COLUMNS.values():
        assert column in MonthlySummary.model_fields
        assert column in SummaryView.model_fields
    # post_count is not a KPI card total
    assert set(KPITotals.model_fields) == set(TOTAL_COLUMNS.values()) - {"post_count"}


def test_only_derived_metrics_lack_a_raw_key():
    for metric in DELTA_METRICS.values():
        if not metric.raw_key:
            assert metric.metric_type is MetricType.DERIVED
    assert DELTA_METRICS["follower_increase"].metric_type is MetricType.GROWTH
