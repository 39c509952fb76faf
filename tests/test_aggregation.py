from datetime import date, datetime

import pytest

from trafficmanager.aggregation import (
    SOCIAL_NETWORK,
    STORE,
    AdAccount,
    AdAccountMetrics,
    AdInsightEntry,
    CampaignInsight,
    Order,
    Origin,
    Sale,
    SalesInsightEntry,
    SalesMetrics,
    available_periods,
    calculate_derived_metrics,
    combine_ad_metrics,
    combine_sales_metrics,
    generate_date_range,
    parse_month_year_to_period,
    sales_metrics_by_origin,
    sum_string_ints,
    update_campaign_metrics,
)
from trafficmanager.utils import round_two_decimals


def _entry(day, impressions, reach, result, spend, campaigns=()):
    return AdInsightEntry(
        account_id=1,
        external_id="act_example",
        date=day,
        ad_metrics=AdAccountMetrics(
            name="Example",
            objective="SALES",
            impressions=impressions,
            reach=reach,
            result=result,
            spend=spend,
            campaigns=list(campaigns),
        ),
    )


def test_generate_date_range_inclusive_and_consecutive():
    start, end = date(2024, 2, 27), date(2024, 3, 2)
    days = generate_date_range(start, end)
    assert days[0] == start
    assert days[-1] == end
    assert all((b - a).days == 1 for a, b in zip(days, days[1:]))


def test_generate_date_range_normalizes_datetimes():
    days = generate_date_range(datetime(2024, 1, 1, 15, 30), datetime(2024, 1, 1, 1, 0))
    assert days == [date(2024, 1, 1)]


@pytest.mark.parametrize(
    "start,end",
    [(None, date(2024, 1, 1)), (date(2024, 1, 1), None), (date(2024, 1, 2), date(2024, 1, 1))],
)
def test_generate_date_range_empty(start, end):
    assert generate_date_range(start, end) == []


@pytest.mark.parametrize("a,b", [(12, 30), (-5, 5), (0, 999)])
def test_sum_string_ints(a, b):
    assert sum_string_ints(str(a), str(b)) == str(a + b)


def test_sum_string_ints_empty_is_zero():
    assert sum_string_ints("", "7") == "7"
    assert sum_string_ints("7", "") == "7"


@pytest.mark.parametrize("a,b", [("abc", "1"), ("1", "2.5"), (" 1", "1")])
def test_sum_string_ints_invalid_gives_zero(a, b):
    assert sum_string_ints(a, b) == "0"


def test_update_campaign_metrics_mutates_existing():
    existing = CampaignInsight("c1", impressions="10", reach="4", clicks="", result=2, spend=1.5)
    adding = CampaignInsight("c1", impressions="5", reach="6", clicks="3", result=1, spend=2.0)
    update_campaign_metrics(existing, adding)
    assert existing.impressions == "15"
    assert existing.reach == "10"
    assert existing.clicks == "3"
    assert existing.result == 3
    assert existing.spend == 1.5 + 2.0


def test_calculate_derived_metrics_zero_guards():
    metrics = AdAccountMetrics()
    calculate_derived_metrics(metrics, 100, 0, 0, 5.0)
    assert metrics.impressions == 100
    assert metrics.cost_per_result == 0.0
    assert metrics.frequency == 0.0
    assert metrics.spend == 5.0


def test_calculate_derived_metrics_sets_ratios():
    metrics = AdAccountMetrics()
    calculate_derived_metrics(metrics, 300, 100, 3, 30.0)
    assert metrics.cost_per_result == round_two_decimals(30.0 / 3)
    assert metrics.frequency == round_two_decimals(300 / 100)
    assert (metrics.reach, metrics.result) == (100, 3)


def test_combine_ad_metrics_empty():
    assert combine_ad_metrics([]) is None


def test_combine_ad_metrics_totals_and_campaign_merge():
    entries = [
        _entry(date(2024, 1, 1), 200, 100, 2, 10.0,
               [CampaignInsight("c1", impressions="200", reach="100", result=2, spend=10.0)]),
        _entry(date(2024, 1, 2), 100, 50, 1, 5.0,
               [CampaignInsight("c1", impressions="100", reach="50", result=1, spend=5.0)]),
    ]
    combined = combine_ad_metrics(entries)
    assert combined.impressions == 300
    assert combined.reach == 150
    assert combined.result == 3
    assert combined.spend == 15.0
    assert combined.account_id == "act_example"
    assert combined.result_by_date["2024-01-02"] == 1
    assert len(combined.campaigns) == 1
    campaign = combined.campaigns[0]
    assert campaign.impressions == "300"
    assert campaign.frequency == "2"
    assert campaign.cost_per_result == round_two_decimals(15.0 / 3)


def test_combine_ad_metrics_does_not_mutate_input_campaigns():
    original = CampaignInsight("c1", impressions="10", reach="5", result=1, spend=1.0)
    entries = [
        _entry(date(2024, 1, 1), 10, 5, 1, 1.0, [original]),
        _entry(date(2024, 1, 2), 10, 5, 1, 1.0,
               [CampaignInsight("c1", impressions="10", reach="5", result=1, spend=1.0)]),
    ]
    combine_ad_metrics(entries)
    assert original.impressions == "10"


def test_combine_ad_metrics_drops_unparsable_campaign():
    entries = [_entry(date(2024, 1, 1), 1, 1, 0, 0.0,
                      [CampaignInsight("bad", impressions="abc", reach="1")])]
    combined = combine_ad_metrics(entries)
    assert combined.campaigns == []


def test_combine_sales_metrics():
    sale = Sale(date(2024, 1, 1), 50.0)
    entries = [
        SalesInsightEntry(1, date(2024, 1, 1), {
            SOCIAL_NETWORK: SalesMetrics(50.0, 1, 50.0, [sale]),
            STORE: None,
        }),
        SalesInsightEntry(1, date(2024, 1, 2), None),
        SalesInsightEntry(1, date(2024, 1, 3), {
            SOCIAL_NETWORK: SalesMetrics(100.0, 1, 100.0, [Sale(date(2024, 1, 3), 100.0)]),
        }),
    ]
    combined = combine_sales_metrics(entries)
    assert set(combined) == {SOCIAL_NETWORK}
    social = combined[SOCIAL_NETWORK]
    assert social.sales_quantity == 2
    assert social.total_revenue == 150.0
    assert social.average_ticket == round_two_decimals(150.0 / 2)
    assert social.sales[0] is sale


def test_combine_sales_metrics_empty():
    assert combine_sales_metrics([]) is None


def test_sales_metrics_by_origin_partitions_orders():
    orders = [
        Order("2024-01-05", 100.0, ["instagram"]),
        Order("2024-01-06", 40.0, []),
        Order("2024-01-07", 60.0, ["walk-in", "instagram"]),
    ]
    social = sales_metrics_by_origin(Origin.SOCIAL_NETWORK, orders, {"instagram"})
    others = sales_metrics_by_origin(Origin.OTHERS, orders, {"instagram"})
    assert social.sales_quantity + others.sales_quantity == len(orders)
    assert social.sales == [Sale(date(2024, 1, 5), 100.0)]
    assert others.total_revenue == 40.0 + 60.0
    assert others.average_ticket == round_two_decimals(100.0 / 2)


def test_sales_metrics_by_origin_no_sales():
    result = sales_metrics_by_origin(Origin.SOCIAL_NETWORK, [], {"instagram"})
    assert (result.sales_quantity, result.average_ticket, result.sales) == (0, 0.0, [])


@pytest.mark.parametrize("bad", ["05/01/2024", ""])
def test_sales_metrics_by_origin_bad_date(bad):
    with pytest.raises(ValueError):
        sales_metrics_by_origin(Origin.OTHERS, [Order(bad, 1.0)], set())


def test_parse_month_year_to_period():
    assert parse_month_year_to_period("03-2024") == date(2024, 3, 1)


@pytest.mark.parametrize("bad", ["2024-03", "13-2024", "3-2024", ""])
def test_parse_month_year_to_period_invalid_is_today(bad):
    assert parse_month_year_to_period(bad) == date.today()


def test_available_periods():
    ad = ["01-2024", "02-2024", "bad"]
    sales = ["01-2024", "12-2023"]
    result = available_periods(ad, sales)
    assert result.periods == sorted(set(ad + sales))
    assert result.years == ["2023", "2024"]
    assert result.months == ["01", "02", "12"]


def test_ad_account_sales_credentials():
    assert AdAccount(1, cnpj="cnpj", secret_name="secret").has_sales_credentials is True
    assert AdAccount(1, cnpj="", secret_name="secret").has_sales_credentials is False
    assert AdAccount(1, cnpj="cnpj").has_sales_credentials is False