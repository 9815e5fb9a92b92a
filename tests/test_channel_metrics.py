"""
Tests for per-channel metrics.

The aggregation is pure, so most cases run on plain stand-in objects
without a database.
"""
from dataclasses import dataclass
from datetime import datetime

import pytest

from shopsync.models.enums import SalesChannel
from shopsync.services.channel_metrics_service import (
    ChannelMetricsService,
    SalesFilter,
    channel_insights,
    compute_channel_metrics,
    summarize,
)
from shopsync.utils.cache import ExpiringCache
from shopsync.utils.errors import ValidationError


@dataclass
class S:
    channel: str
    total_amount: int
    platform_fees: int = 0


SAMPLE = [
    S("etsy", 10000, 650),
    S("etsy", 5000, 325),
    S("shopify", 20000),
    S("direct", 3333),
    S("amazon", 1, 0),
]


# ────────────────────────────────────────────
# PURE AGGREGATION
# ────────────────────────────────────────────


class TestComputeChannelMetrics:

    def test_revenue_sums_to_total(self):
        metrics = compute_channel_metrics(SAMPLE)
        assert sum(m.revenue for m in metrics.values()) == sum(s.total_amount for s in SAMPLE)

    def test_percentages_sum_to_100(self):
        metrics = compute_channel_metrics(SAMPLE)
        assert sum(m.percent_of_total for m in metrics.values()) == pytest.approx(100, abs=0.05)

    def test_per_channel_figures(self):
        etsy = compute_channel_metrics(SAMPLE)[SalesChannel.ETSY]
        assert etsy.order_count == 2
        assert etsy.revenue == 15000
        assert etsy.platform_fees == 975
        assert etsy.net_revenue == 14025
        assert etsy.average_order_value == 7500

    def test_average_rounds_half_up(self):
        metrics = compute_channel_metrics([S("ebay", 1), S("ebay", 2)])
        assert metrics[SalesChannel.EBAY].average_order_value == 2

    def test_channels_without_orders_are_omitted(self):
        metrics = compute_channel_metrics(SAMPLE)
        assert SalesChannel.EBAY not in metrics
        assert SalesChannel.WHOLESALE not in metrics

    def test_ordered_by_revenue(self):
        channels = list(compute_channel_metrics(SAMPLE))
        assert channels == [SalesChannel.SHOPIFY, SalesChannel.ETSY, SalesChannel.DIRECT, SalesChannel.AMAZON]

    def test_empty_input(self):
        assert compute_channel_metrics([]) == {}

    def test_zero_revenue_gives_zero_percent(self):
        metrics = compute_channel_metrics([S("direct", 0)])
        assert metrics[SalesChannel.DIRECT].percent_of_total == 0.0


class TestSummaryAndInsights:

    def test_summary(self):
        summary = summarize(compute_channel_metrics(SAMPLE))
        assert summary == {
            "total_revenue": 38334,
            "total_orders": 5,
            "total_fees": 975,
            "total_net_revenue": 37359,
        }

    def test_insights(self):
        insights = channel_insights(compute_channel_metrics(SAMPLE))
        assert insights["highest_revenue"] == "shopify"
        assert insights["highest_aov"] == "shopify"
        assert insights["most_orders"] == "etsy"
        assert insights["lowest_fees"] in ("shopify", "direct", "amazon")

    def test_insights_empty(self):
        assert channel_insights({})["highest_revenue"] is None


# ────────────────────────────────────────────
# FILTER + MEMOIZED SERVICE
# ────────────────────────────────────────────


class TestSalesFilter:

    def test_inverted_date_range_rejected(self):
        with pytest.raises(ValidationError):
            SalesFilter(date_from=datetime(2025, 2, 1), date_to=datetime(2025, 1, 1))

    def test_equal_filters_share_cache_key(self):
        a = SalesFilter(channel=SalesChannel.ETSY)
        b = SalesFilter(channel=SalesChannel.ETSY)
        assert a.cache_key() == b.cache_key()
        assert a.cache_key() != SalesFilter().cache_key()


class TestChannelMetricsService:

    def test_filter_by_channel(self, db, make_sale):
        make_sale(channel=SalesChannel.ETSY, total_amount=1000, external_order_id="1")
        make_sale(channel=SalesChannel.DIRECT, total_amount=500)
        service = ChannelMetricsService(db, ExpiringCache(60))

        metrics = service.compute(SalesFilter(channel=SalesChannel.ETSY))
        assert list(metrics) == [SalesChannel.ETSY]
        assert metrics[SalesChannel.ETSY].percent_of_total == 100.0

    def test_results_memoized_until_invalidated(self, db, make_sale):
        make_sale(total_amount=1000)
        service = ChannelMetricsService(db, ExpiringCache(60))
        assert service.compute()[SalesChannel.DIRECT].revenue == 1000

        make_sale(total_amount=500)
        assert service.compute()[SalesChannel.DIRECT].revenue == 1000

        service.invalidate()
        assert service.compute()[SalesChannel.DIRECT].revenue == 1500

    def test_report_shape(self, db, make_sale):
        make_sale(total_amount=1000)
        report = ChannelMetricsService(db, ExpiringCache(60)).report()
        assert report["channels"][0]["channel"] == "direct"
        assert report["summary"]["total_orders"] == 1
        assert report["insights"]["most_orders"] == "direct"
