"""Insight use cases: ad and sales metrics per account, with an optional daily cache."""

from __future__ import annotations

from collections.abc import Callable, Collection, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Protocol

from trafficmanager import applog
from trafficmanager.aggregation import (
    SOCIAL_NETWORK,
    STORE,
    AdAccount,
    AdAccountMetrics,
    AdInsightEntry,
    AvailablePeriods,
    InsightFilters,
    Order,
    Origin,
    SalesInsightEntry,
    SalesMetrics,
    available_periods,
    combine_ad_metrics,
    combine_sales_metrics,
    generate_date_range,
    parse_month_year_to_period,
    sales_metrics_by_origin,
)

MAX_CONCURRENT_FETCHES = 5
ACTIVE_STATUS = "active"

ResultCalculator = Callable[[AdAccountMetrics, dict], Any]


class InsightError(Exception):
    """A request for insights that cannot be served."""


class MetaService(Protocol):
    def get_ad_account_insights(
        self, account_id: str, filters: InsightFilters
    ) -> AdAccountMetrics: ...

    def get_ad_account_reach_impressions(
        self, account_id: str, filters: InsightFilters
    ) -> Any: ...


class SalesService(Protocol):
    def get_sales_by_account(
        self, cnpj: str, secret_name: str, filters: InsightFilters
    ) -> Sequence[Order] | None: ...


class AccountRepository(Protocol):
    def get_account_by_external_id(self, external_id: str) -> AdAccount | None: ...

    def list_accounts(self, statuses: Sequence[str]) -> Sequence[AdAccount]: ...


class DailyInsightRepository(Protocol):
    def get_by_date_range(self, account_id: int, start: date, end: date) -> Sequence[Any]: ...

    def save_or_update(self, entry: Any) -> None: ...


class MonthlyInsightRepository(Protocol):
    def get_by_account_id_and_period(self, account_id: int, period: date) -> Any: ...

    def get_all_periods(self) -> Sequence[str]: ...


@dataclass
class AdInsightsResponse:
    filters: InsightFilters
    ad_account_metrics: AdAccountMetrics | None = None
    sales_metrics: dict[str, SalesMetrics] | None = None
    result_metrics: Any = None


@dataclass
class MonthlyInsightReport:
    account_id: int
    account_name: str
    period: str
    ad_metrics: Any = None
    sales_metrics: Any = None
    result_metrics: Any = None


def _day(value: date) -> date:
    return value.date() if isinstance(value, datetime) else value


def _validate_filters(filters: InsightFilters | None) -> InsightFilters:
    if filters is None or filters.start_date is None or filters.end_date is None:
        raise InsightError("é necessário informar as datas de início e fim")
    if filters.start_date > filters.end_date:
        raise InsightError("a data de início não pode ser posterior à data de fim")
    return filters


class InsightService:
    """Combines ad metrics from Meta with sales metrics from the point-of-sale system."""

    def __init__(
        self,
        meta_service: MetaService,
        sales_service: SalesService,
        account_repository: AccountRepository,
        social_origins: Collection[str] = (),
        result_calculator: ResultCalculator | None = None,
        today: Callable[[], date] = date.today,
    ):
        self.meta_service = meta_service
        self.sales_service = sales_service
        self.account_repository = account_repository
        self.social_origins = frozenset(social_origins)
        self.result_calculator = result_calculator
        self.today = today
        self.ad_repository: DailyInsightRepository | None = None
        self.sales_repository: DailyInsightRepository | None = None
        self.monthly_ad_repository: MonthlyInsightRepository | None = None
        self.monthly_sales_repository: MonthlyInsightRepository | None = None
        self.use_cache = False

    def with_cache(
        self,
        ad_repo: DailyInsightRepository | None,
        sales_repo: DailyInsightRepository | None,
        monthly_ad_repo: MonthlyInsightRepository | None,
        monthly_sales_repo: MonthlyInsightRepository | None,
    ) -> InsightService:
        """Attach insight repositories; the daily cache is used when both daily ones are set."""
        self.ad_repository = ad_repo
        self.sales_repository = sales_repo
        self.monthly_ad_repository = monthly_ad_repo
        self.monthly_sales_repository = monthly_sales_repo
        self.use_cache = ad_repo is not None and sales_repo is not None
        return self

    def _result_metrics(
        self, ad_metrics: Any, sales_metrics: dict | None, require_social: bool = True
    ) -> Any:
        if self.result_calculator is None or ad_metrics is None or sales_metrics is None:
            return None
        if require_social and sales_metrics.get(SOCIAL_NETWORK) is None:
            return None
        return self.result_calculator(ad_metrics, sales_metrics)

    def get_ad_account_by_id(
        self, account_id: str, filters: InsightFilters | None
    ) -> AdInsightsResponse:
        """Ad and sales metrics for the account with the given external id."""
        filters = _validate_filters(filters)
        try:
            account = self.account_repository.get_account_by_external_id(account_id)
        except Exception as exc:
            applog.default_logger.with_fields(
                {"accountID": account_id, "error": str(exc)}
            ).error("Erro ao buscar conta pelo ID no repositório")
            raise
        if account is None:
            raise InsightError(f"conta não encontrada: {account_id}")

        response = AdInsightsResponse(filters=filters)
        if self.use_cache:
            return self._fetch_with_cache(response, account, account_id, filters)
        return self._fetch_without_cache(response, account, account_id, filters)

    def _fetch_with_cache(
        self,
        response: AdInsightsResponse,
        account: AdAccount,
        external_id: str,
        filters: InsightFilters,
    ) -> AdInsightsResponse:
        days = generate_date_range(filters.start_date, filters.end_date)
        if not days:
            raise InsightError("período de datas inválido")

        ad_insights: list[AdInsightEntry] = []
        sales_insights: list[SalesInsightEntry] = []
        with ThreadPoolExecutor(max_workers=2) as pool:
            ad_future = pool.submit(self._ad_metrics_with_cache, account, external_id, filters, days)
            sales_future = (
                pool.submit(self._sales_metrics_with_cache, account, filters, days)
                if account.has_sales_credentials
                else None
            )
            try:
                ad_insights = ad_future.result()
            except Exception as exc:
                applog.default_logger.with_error(exc).error(
                    "Erro ao buscar métricas de anúncios com cache"
                )
            if sales_future is not None:
                try:
                    sales_insights = sales_future.result()
                except Exception as exc:
                    applog.default_logger.with_error(exc).error(
                        "Erro ao buscar métricas de vendas com cache"
                    )

        if ad_insights:
            response.ad_account_metrics = combine_ad_metrics(ad_insights)
        if sales_insights:
            response.sales_metrics = combine_sales_metrics(sales_insights)
        response.result_metrics = self._result_metrics(
            response.ad_account_metrics, response.sales_metrics
        )
        return response

    def _cached_entries(
        self, repository: DailyInsightRepository, account: AdAccount, filters: InsightFilters, kind: str
    ) -> list[Any]:
        try:
            return list(
                repository.get_by_date_range(account.id, filters.start_date, filters.end_date)
            )
        except Exception as exc:
            applog.default_logger.with_error(exc).with_fields(
                {
                    "account_id": account.id,
                    "start_date": _day(filters.start_date).isoformat(),
                    "end_date": _day(filters.end_date).isoformat(),
                }
            ).warning(
                "Erro ao buscar insights de %s do banco de dados para o período", kind
            )
            return []

    @staticmethod
    def _missing_days(days: Iterable[date], entries: Iterable[Any]) -> list[date]:
        present = {_day(entry.date) for entry in entries}
        return [day for day in days if day not in present]

    def _fetch_days(self, fetch: Callable[[date], Any], days: Sequence[date]) -> list[Any]:
        with ThreadPoolExecutor(max_workers=MAX_CONCURRENT_FETCHES) as pool:
            return [entry for entry in pool.map(fetch, days) if entry is not None]

    def _ad_metrics_with_cache(
        self,
        account: AdAccount,
        external_id: str,
        filters: InsightFilters,
        days: Sequence[date],
    ) -> list[AdInsightEntry]:
        repository = self.ad_repository
        entries = self._cached_entries(repository, account, filters, "anúncios")
        missing = self._missing_days(days, entries)
        if not missing:
            return entries

        applog.default_logger.with_fields(
            {
                "account_id": account.id,
                "external_id": external_id,
                "missing_dates": len(missing),
                "total_dates": len(days),
                "first_missing": missing[0].isoformat(),
                "last_missing": missing[-1].isoformat(),
            }
        ).info("Buscando insights de anúncios da API para datas faltantes")

        def fetch(day: date) -> AdInsightEntry | None:
            daily = InsightFilters(start_date=day, end_date=day)
            try:
                metrics = self.meta_service.get_ad_account_insights(external_id, daily)
            except Exception as exc:
                applog.default_logger.with_error(exc).with_fields(
                    {"account_id": account.id, "date": day.isoformat()}
                ).warning("Erro ao obter insights de anúncios do Meta")
                return None
            entry = AdInsightEntry(
                account_id=account.id, external_id=external_id, date=day, ad_metrics=metrics
            )
            if day != self.today():
                try:
                    repository.save_or_update(entry)
                except Exception as exc:
                    applog.default_logger.with_error(exc).with_field(
                        "account_id", account.id
                    ).warning("Erro ao salvar insights de anúncios no banco de dados")
            return entry

        return entries + self._fetch_days(fetch, missing)

    def _sales_metrics_with_cache(
        self, account: AdAccount, filters: InsightFilters, days: Sequence[date]
    ) -> list[SalesInsightEntry]:
        repository = self.sales_repository
        entries = self._cached_entries(repository, account, filters, "vendas")
        missing = self._missing_days(days, entries)
        if not missing or not account.has_sales_credentials:
            return entries

        applog.default_logger.with_fields(
            {
                "account_id": account.id,
                "missing_dates": len(missing),
                "total_dates": len(days),
                "first_missing": missing[0].isoformat(),
                "last_missing": missing[-1].isoformat(),
            }
        ).info("Buscando insights de vendas da API para datas faltantes")

        def fetch(day: date) -> SalesInsightEntry | None:
            daily = InsightFilters(start_date=day, end_date=day)
            try:
                metrics = self.get_sales_metrics(account.cnpj, account.secret_name, daily)
            except Exception as exc:
                applog.default_logger.with_error(exc).with_field(
                    "account_id", account.id
                ).warning("Erro ao obter dados de vendas do SSOtica")
                return None
            if not metrics:
                applog.default_logger.with_field("account_id", account.id).warning(
                    "Erro ao obter dados de vendas do SSOtica"
                )
                return None
            entry = SalesInsightEntry(account_id=account.id, date=day, sales_metrics=metrics)
            if day != self.today():
                try:
                    repository.save_or_update(entry)
                except Exception as exc:
                    applog.default_logger.with_error(exc).with_fields(
                        {"account_id": account.id, "date": day.isoformat()}
                    ).warning("Erro ao salvar insights de vendas no banco de dados")
            return entry

        return entries + self._fetch_days(fetch, missing)

    def _fetch_without_cache(
        self,
        response: AdInsightsResponse,
        account: AdAccount,
        external_id: str,
        filters: InsightFilters,
    ) -> AdInsightsResponse:
        has_credentials = account.cnpj is not None and account.secret_name is not None
        with ThreadPoolExecutor(max_workers=2) as pool:
            ad_future = pool.submit(self.meta_service.get_ad_account_insights, external_id, filters)
            sales_future = (
                pool.submit(self.get_sales_metrics, account.cnpj, account.secret_name, filters)
                if has_credentials
                else None
            )
            try:
                response.ad_account_metrics = ad_future.result()
            except Exception as exc:
                applog.default_logger.with_error(exc).with_field(
                    "accountID", external_id
                ).warning("Erro ao obter insights de anúncios do Meta")
            if sales_future is not None:
                try:
                    sales = sales_future.result()
                except Exception as exc:
                    applog.default_logger.with_error(exc).with_field(
                        "accountID", external_id
                    ).warning("Erro ao obter dados de vendas do SSOtica")
                else:
                    if sales:
                        response.sales_metrics = sales
                    else:
                        applog.default_logger.with_field("accountID", external_id).warning(
                            "Erro ao obter dados de vendas do SSOtica"
                        )

        response.result_metrics = self._result_metrics(
            response.ad_account_metrics, response.sales_metrics
        )
        return response

    def get_ad_account_metrics(self, account_id: str, filters: InsightFilters) -> AdAccountMetrics:
        """Ad metrics for the account straight from Meta; errors propagate."""
        applog.default_logger.with_fields(
            {
                "account_id": account_id,
                "start_date": _day(filters.start_date).isoformat(),
                "end_date": _day(filters.end_date).isoformat(),
            }
        ).info("Obtendo métricas de anúncios do Meta")
        try:
            return self.meta_service.get_ad_account_insights(account_id, filters)
        except Exception as exc:
            applog.default_logger.with_error(exc).warning(
                "Erro ao obter métricas de anúncios do Meta"
            )
            raise

    def get_sales_metrics(
        self, cnpj: str, secret_name: str, filters: InsightFilters
    ) -> dict[str, SalesMetrics]:
        """Sales metrics split into social-network and store origins."""
        applog.default_logger.with_fields(
            {
                "cnpj": cnpj,
                "secret_name": secret_name,
                "start_date": _day(filters.start_date).isoformat(),
                "end_date": _day(filters.end_date).isoformat(),
            }
        ).info("Obtendo métricas de vendas do SSOtica")
        try:
            orders = self.sales_service.get_sales_by_account(cnpj, secret_name, filters)
        except Exception as exc:
            applog.default_logger.with_error(exc).warning("Erro ao obter vendas do SSOtica")
            raise
        orders = list(orders or ())
        return {
            SOCIAL_NETWORK: sales_metrics_by_origin(
                Origin.SOCIAL_NETWORK, orders, self.social_origins
            ),
            STORE: sales_metrics_by_origin(Origin.OTHERS, orders, self.social_origins),
        }

    def _require_monthly(self) -> tuple[MonthlyInsightRepository, MonthlyInsightRepository]:
        if self.monthly_ad_repository is None or self.monthly_sales_repository is None:
            raise InsightError("repositórios de insights mensais não estão disponíveis")
        return self.monthly_ad_repository, self.monthly_sales_repository

    def get_monthly_insights_by_period(self, period: str) -> list[MonthlyInsightReport]:
        """Monthly reports of every active account for an ``MM-YYYY`` period."""
        ad_repo, sales_repo = self._require_monthly()
        try:
            accounts = self.account_repository.list_accounts([ACTIVE_STATUS])
        except Exception as exc:
            raise InsightError(f"erro ao buscar contas: {exc}") from exc

        month = parse_month_year_to_period(period)
        reports: list[MonthlyInsightReport] = []
        for account in accounts:
            try:
                ad_insight = ad_repo.get_by_account_id_and_period(account.id, month)
            except Exception as exc:
                applog.default_logger.with_error(exc).with_fields(
                    {"account_id": account.id, "period": period}
                ).error("erro ao buscar insights mensais de anúncios")
                continue
            try:
                sales_insight = sales_repo.get_by_account_id_and_period(account.id, month)
            except Exception as exc:
                applog.default_logger.with_error(exc).with_fields(
                    {"account_id": account.id, "period": period}
                ).error("erro ao buscar insights mensais de vendas")
                sales_insight = None

            if ad_insight is None and sales_insight is None:
                continue

            report = MonthlyInsightReport(
                account_id=account.id,
                account_name=account.nickname or "",
                period=period,
            )
            if ad_insight is not None:
                report.ad_metrics = ad_insight.ad_metrics
            if sales_insight is not None:
                report.sales_metrics = sales_insight.sales_metrics
            report.result_metrics = self._result_metrics(
                report.ad_metrics, report.sales_metrics, require_social=False
            )
            reports.append(report)
        return reports

    def get_available_monthly_periods(self) -> AvailablePeriods:
        """Distinct periods, years and months found in the monthly insight stores."""
        ad_repo, sales_repo = self._require_monthly()
        try:
            ad_periods = ad_repo.get_all_periods()
        except Exception as exc:
            raise InsightError(f"erro ao buscar períodos de insights de anúncios: {exc}") from exc
        try:
            sales_periods = sales_repo.get_all_periods()
        except Exception as exc:
            raise InsightError(f"erro ao buscar períodos de insights de vendas: {exc}") from exc
        return available_periods(ad_periods, sales_periods)

    def get_reach_impressions(self, account_id: str, filters: InsightFilters | None) -> Any:
        """Reach and impressions of the account straight from Meta."""
        filters = _validate_filters(filters)
        fields = {
            "account_id": account_id,
            "start_date": _day(filters.start_date).isoformat(),
            "end_date": _day(filters.end_date).isoformat(),
        }
        applog.default_logger.with_fields(fields).info(
            "Obtendo Reach e Impressions da conta do Meta"
        )
        try:
            return self.meta_service.get_ad_account_reach_impressions(account_id, filters)
        except Exception as exc:
            applog.default_logger.with_error(exc).with_fields(fields).error(
                "Erro ao obter Reach e Impressions do Meta"
            )
            raise