"""
Channel Metrics Service
Per-channel order counts, revenue, fees and share of total

``compute_channel_metrics`` is a pure function of the sales it is given.
``ChannelMetricsService`` loads sales for a filter and memoizes the result
until the next sync or fulfillment transition invalidates it.
"""
from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Query, Session

from shopsync.models.enums import FulfillmentStatus, PaymentStatus, SalesChannel
from shopsync.models.sale import Sale
from shopsync.utils.cache import ExpiringCache
from shopsync.utils.errors import ValidationError
from shopsync.utils.helpers import divide_half_up, hash_data
from shopsync.utils.logger import log


@dataclass
class ChannelMetric:
    channel: SalesChannel
    order_count: int = 0
    revenue: int = 0  # minor units
    average_order_value: int = 0
    platform_fees: int = 0
    net_revenue: int = 0
    percent_of_total: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["channel"] = self.channel.value
        return data


def _percent(part: int, whole: int) -> float:
    if whole == 0:
        return 0.0
    share = (Decimal(part) * 100 / Decimal(whole)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return float(share)


def compute_channel_metrics(sales: Iterable[Any]) -> Dict[SalesChannel, ChannelMetric]:
    """
    Aggregate sales per channel.

    Each sale needs ``channel``, ``total_amount`` and ``platform_fees``.
    Channels without orders are left out. Results are ordered by revenue,
    highest first.
    """
    metrics: Dict[SalesChannel, ChannelMetric] = {}
    for sale in sales:
        channel = SalesChannel(sale.channel)
        metric = metrics.get(channel)
        if metric is None:
            metric = metrics[channel] = ChannelMetric(channel=channel)
        metric.order_count += 1
        metric.revenue += sale.total_amount or 0
        metric.platform_fees += sale.platform_fees or 0

    total_revenue = sum(m.revenue for m in metrics.values())
    for metric in metrics.values():
        metric.net_revenue = metric.revenue - metric.platform_fees
        metric.average_order_value = divide_half_up(metric.revenue, metric.order_count)
        metric.percent_of_total = _percent(metric.revenue, total_revenue)

    ordered = sorted(metrics.values(), key=lambda m: (-m.revenue, m.channel.value))
    return {m.channel: m for m in ordered}


def summarize(metrics: Dict[SalesChannel, ChannelMetric]) -> Dict[str, int]:
    return {
        "total_revenue": sum(m.revenue for m in metrics.values()),
        "total_orders": sum(m.order_count for m in metrics.values()),
        "total_fees": sum(m.platform_fees for m in metrics.values()),
        "total_net_revenue": sum(m.net_revenue for m in metrics.values()),
    }


def channel_insights(metrics: Dict[SalesChannel, ChannelMetric]) -> Dict[str, Optional[str]]:
    """Which channel leads on revenue, order value, volume, and which costs least in fees"""
    values = list(metrics.values())
    if not values:
        return {"highest_revenue": None, "highest_aov": None, "most_orders": None, "lowest_fees": None}

    def fee_rate(m: ChannelMetric) -> Decimal:
        return Decimal(m.platform_fees) / Decimal(m.revenue) if m.revenue else Decimal(0)

    return {
        "highest_revenue": max(values, key=lambda m: m.revenue).channel.value,
        "highest_aov": max(values, key=lambda m: m.average_order_value).channel.value,
        "most_orders": max(values, key=lambda m: m.order_count).channel.value,
        "lowest_fees": min(values, key=fee_rate).channel.value,
    }


@dataclass
class SalesFilter:
    channel: Optional[SalesChannel] = None
    fulfillment_status: Optional[FulfillmentStatus] = None
    payment_status: Optional[PaymentStatus] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    customer_id: Optional[int] = None

    def __post_init__(self):
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValidationError("date_from must not be after date_to")

    def apply(self, query: Query) -> Query:
        if self.channel is not None:
            query = query.filter(Sale.channel == SalesChannel(self.channel).value)
        if self.fulfillment_status is not None:
            query = query.filter(Sale.fulfillment_status == FulfillmentStatus(self.fulfillment_status).value)
        if self.payment_status is not None:
            query = query.filter(Sale.payment_status == PaymentStatus(self.payment_status).value)
        if self.customer_id is not None:
            query = query.filter(Sale.customer_id == self.customer_id)

        placed_at = func.coalesce(Sale.ordered_at, Sale.created_at)
        if self.date_from is not None:
            query = query.filter(placed_at >= self.date_from)
        if self.date_to is not None:
            query = query.filter(placed_at <= self.date_to)
        return query

    def cache_key(self) -> str:
        return hash_data(asdict(self))


class ChannelMetricsService:
    """Memoized channel metrics per filter"""

    def __init__(self, db: Session, cache: ExpiringCache):
        self.db = db
        self.cache = cache

    def compute(self, sales_filter: Optional[SalesFilter] = None) -> Dict[SalesChannel, ChannelMetric]:
        sales_filter = sales_filter or SalesFilter()
        key = sales_filter.cache_key()

        cached, found = self.cache.lookup(key)
        if found:
            return cached

        sales = sales_filter.apply(self.db.query(Sale)).all()
        metrics = compute_channel_metrics(sales)
        self.cache.set(key, metrics)
        log.debug(f"Computed channel metrics over {len(sales)} sales ({len(metrics)} channels)")
        return metrics

    def report(self, sales_filter: Optional[SalesFilter] = None) -> Dict[str, Any]:
        metrics = self.compute(sales_filter)
        return {
            "channels": [m.to_dict() for m in metrics.values()],
            "summary": summarize(metrics),
            "insights": channel_insights(metrics),
        }

    def invalidate(self):
        self.cache.clear()
