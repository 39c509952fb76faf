"""Data model and pure aggregation of ad and sales insights."""

from __future__ import annotations

import dataclasses
import re
from collections.abc import Collection, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum

from trafficmanager import applog
from trafficmanager.utils import parse_date, round_two_decimals

SOCIAL_NETWORK = "social_network"
STORE = "store"

_INT_PATTERN = re.compile(r"[+-]?\d+", re.ASCII)
_PERIOD_PATTERN = re.compile(r"(\d{2})-(\d{4})", re.ASCII)


class Origin(Enum):
    """Which customer origin a sales search counts."""

    SOCIAL_NETWORK = "social_network"
    OTHERS = "others"


@dataclass
class InsightFilters:
    start_date: date | None = None
    end_date: date | None = None


@dataclass
class AdAccount:
    id: int
    external_id: str = ""
    name: str = ""
    nickname: str | None = None
    cnpj: str | None = None
    secret_name: str | None = None
    status: str = ""

    @property
    def has_sales_credentials(self) -> bool:
        """True when both the CNPJ and the secret name are set and non-empty."""
        return bool(self.cnpj) and bool(self.secret_name)


@dataclass
class CampaignInsight:
    campaign_id: str
    name: str = ""
    objective: str = ""
    impressions: str = ""
    reach: str = ""
    clicks: str = ""
    result: int = 0
    spend: float = 0.0
    cost_per_result: float = 0.0
    frequency: str = ""


@dataclass
class AdAccountMetrics:
    account_id: str = ""
    name: str = ""
    objective: str = ""
    campaigns: list[CampaignInsight] = field(default_factory=list)
    impressions: int = 0
    reach: int = 0
    result: int = 0
    spend: float = 0.0
    cost_per_result: float = 0.0
    frequency: float = 0.0
    cost_per_result_by_date: dict[str, float] = field(default_factory=dict)
    result_by_date: dict[str, int] = field(default_factory=dict)


@dataclass
class Sale:
    date: date | None
    net_amount: float


@dataclass
class SalesMetrics:
    total_revenue: float = 0.0
    sales_quantity: int = 0
    average_ticket: float = 0.0
    sales: list[Sale] = field(default_factory=list)


@dataclass
class Order:
    """A sale as reported by the point-of-sale system."""

    date: str
    net_amount: float
    customer_origins: list[str] = field(default_factory=list)


@dataclass
class AdInsightEntry:
    account_id: int
    external_id: str
    date: date
    ad_metrics: AdAccountMetrics | None


@dataclass
class SalesInsightEntry:
    account_id: int
    date: date
    sales_metrics: dict[str, SalesMetrics | None] | None


@dataclass
class AvailablePeriods:
    periods: list[str]
    years: list[str]
    months: list[str]


def _as_date(value: date) -> date:
    return value.date() if isinstance(value, datetime) else value


def _parse_int(text: str) -> int:
    if not _INT_PATTERN.fullmatch(text):
        raise ValueError(f"invalid integer {text!r}")
    return int(text)


def _format_float(value: float) -> str:
    text = format(Decimal(repr(value)), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def generate_date_range(start_date: date | None, end_date: date | None) -> list[date]:
    """Every calendar day from ``start_date`` to ``end_date``, both included."""
    if start_date is None or end_date is None:
        return []
    start, end = _as_date(start_date), _as_date(end_date)
    if start > end:
        return []
    return [start + timedelta(days=offset) for offset in range((end - start).days + 1)]


def sum_string_ints(a: str, b: str) -> str:
    """Add two decimal integer strings; empty counts as zero, invalid input yields ``"0"``."""
    try:
        total = _parse_int(a or "0") + _parse_int(b or "0")
    except ValueError as exc:
        applog.default_logger.error(
            "Error on sumStringInts a: %s and b: %s. error: %s", a, b, exc
        )
        return "0"
    return str(total)


def update_campaign_metrics(existing: CampaignInsight, adding: CampaignInsight) -> None:
    """Add the counters of ``adding`` into ``existing``."""
    existing.impressions = sum_string_ints(existing.impressions, adding.impressions)
    existing.reach = sum_string_ints(existing.reach, adding.reach)
    existing.clicks = sum_string_ints(existing.clicks, adding.clicks)
    existing.result += adding.result
    existing.spend += adding.spend


def calculate_derived_metrics(
    metrics: AdAccountMetrics,
    total_impressions: int,
    total_reach: int,
    total_results: int,
    total_spend: float,
) -> None:
    """Store the totals on ``metrics`` and derive cost per result and frequency."""
    metrics.impressions = total_impressions
    metrics.reach = total_reach
    metrics.result = total_results
    metrics.spend = round_two_decimals(total_spend)
    if total_results > 0:
        metrics.cost_per_result = round_two_decimals(total_spend / total_results)
    if total_reach > 0:
        metrics.frequency = round_two_decimals(total_impressions / total_reach)


def combine_ad_metrics(ad_insights: Sequence[AdInsightEntry]) -> AdAccountMetrics | None:
    """Merge daily ad insights into one set of account metrics, or ``None`` when empty."""
    if not ad_insights:
        return None

    first = ad_insights[0]
    if first.ad_metrics is None:
        raise ValueError("the first ad insight carries no metrics")
    first_day = _as_date(first.date).isoformat()

    combined = AdAccountMetrics(
        account_id=first.external_id,
        name=first.ad_metrics.name,
        objective=first.ad_metrics.objective,
        campaigns=[],
        cost_per_result_by_date={first_day: first.ad_metrics.cost_per_result},
        result_by_date={first_day: first.ad_metrics.result},
    )

    total_impressions = total_reach = total_results = 0
    total_spend = 0.0
    campaigns: dict[str, CampaignInsight] = {}

    for insight in ad_insights:
        metrics = insight.ad_metrics
        if metrics is None:
            continue
        total_impressions += metrics.impressions
        total_reach += metrics.reach
        total_results += metrics.result
        total_spend += metrics.spend

        day = _as_date(insight.date).isoformat()
        combined.cost_per_result_by_date[day] = (
            combined.cost_per_result_by_date.get(day, 0.0) + metrics.cost_per_result
        )
        combined.result_by_date[day] = combined.result_by_date.get(day, 0) + metrics.result

        for campaign in metrics.campaigns:
            existing = campaigns.get(campaign.campaign_id)
            if existing is None:
                campaigns[campaign.campaign_id] = dataclasses.replace(campaign)
            else:
                update_campaign_metrics(existing, campaign)

    for campaign in campaigns.values():
        try:
            impressions = _parse_int(campaign.impressions)
            reach = _parse_int(campaign.reach)
        except ValueError as exc:
            applog.default_logger.error(
                "Error on campaign %s metrics: %s", campaign.campaign_id, exc
            )
            continue
        if campaign.result > 0:
            campaign.cost_per_result = round_two_decimals(campaign.spend / campaign.result)
        if reach > 0:
            campaign.frequency = _format_float(round_two_decimals(impressions / reach))
        campaign.spend = round_two_decimals(campaign.spend)
        combined.campaigns.append(campaign)

    calculate_derived_metrics(
        combined, total_impressions, total_reach, total_results, total_spend
    )
    return combined


def combine_sales_metrics(
    sales_insights: Sequence[SalesInsightEntry],
) -> dict[str, SalesMetrics] | None:
    """Merge daily sales insights per origin, or ``None`` when empty."""
    if not sales_insights:
        return None

    revenue: dict[str, float] = {}
    quantity: dict[str, int] = {}
    sales: dict[str, list[Sale]] = {}

    for insight in sales_insights:
        if insight.sales_metrics is None:
            continue
        for origin, metrics in insight.sales_metrics.items():
            if metrics is None:
                continue
            revenue[origin] = revenue.get(origin, 0.0) + metrics.total_revenue
            quantity[origin] = quantity.get(origin, 0) + metrics.sales_quantity
            sales.setdefault(origin, []).extend(metrics.sales or ())

    combined: dict[str, SalesMetrics] = {}
    for origin, total in revenue.items():
        count = quantity[origin]
        average = total / count if count > 0 else 0.0
        combined[origin] = SalesMetrics(
            total_revenue=round_two_decimals(total),
            sales_quantity=count,
            average_ticket=round_two_decimals(average),
            sales=sales[origin],
        )
    return combined


def sales_metrics_by_origin(
    origin: Origin, orders: Iterable[Order], social_origins: Collection[str]
) -> SalesMetrics:
    """Sales metrics for orders whose first customer origin matches ``origin``.

    Social-network orders have a first origin in ``social_origins``; all other
    orders count as others. An order date not in ``YYYY-MM-DD`` raises ``ValueError``.
    """
    total = 0.0
    counted: list[Sale] = []
    for order in orders:
        is_social = bool(order.customer_origins) and order.customer_origins[0] in social_origins
        if origin is Origin.SOCIAL_NETWORK:
            should_count = is_social
        elif origin is Origin.OTHERS:
            should_count = not is_social
        else:
            should_count = False
        if not should_count:
            continue
        if not order.date:
            raise ValueError("sale date is empty")
        try:
            sale_date = parse_date(order.date)
        except ValueError:
            applog.default_logger.error("Error on parse sale date: %s", order.date)
            raise
        total += order.net_amount
        counted.append(Sale(date=sale_date, net_amount=order.net_amount))

    count = len(counted)
    average = round_two_decimals(total / count) if count > 0 else 0.0
    return SalesMetrics(
        total_revenue=round_two_decimals(total),
        sales_quantity=count,
        average_ticket=average,
        sales=counted,
    )


def parse_month_year_to_period(period: str) -> date:
    """First day of the ``MM-YYYY`` month; today's date when the period is invalid."""
    match = _PERIOD_PATTERN.fullmatch(period)
    if match:
        month, year = int(match.group(1)), int(match.group(2))
        if 1 <= month <= 12:
            return date(year, month, 1)
    applog.default_logger.with_field("period", period).error(
        "erro ao converter período para data"
    )
    return date.today()


def available_periods(
    ad_periods: Iterable[str], sales_periods: Iterable[str]
) -> AvailablePeriods:
    """Sorted distinct periods, plus the years and months of the ``MM-YYYY`` ones."""
    periods: set[str] = set()
    years: set[str] = set()
    months: set[str] = set()
    for source in (ad_periods, sales_periods):
        for period in source:
            periods.add(period)
            if len(period) == 7:
                months.add(period[:2])
                years.add(period[3:])
    return AvailablePeriods(
        periods=sorted(periods), years=sorted(years), months=sorted(months)
    )