# trafficmanager

These are the building blocks for a traffic management API, which reports on ad campaigns and store sales. The package needs only the standard library.

## Modules

- **`trafficmanager.middleware`** holds WSGI middleware. Use `chain(app, *middlewares)` to combine them. The first middleware you pass becomes the outermost layer.
  - `auth_middleware(auth_service)`
    - Requests to `/v1/login`, `/v1/register` and `/healthcheck` pass without a check.
    - Every other request needs an `Authorization: Bearer token` header.
    - The middleware calls `auth_service.validate_token(token)`. It stores the returned claims in the environ under `USER_ENVIRON_KEY`.
    - A missing header, a header without the bearer scheme, or a token that fails validation gets a plain-text `401` response.
  - `cors()`
    - Adds CORS headers when the `Origin` is in `ALLOWED_ORIGINS`. Use `is_origin_allowed(origin)` to test an origin.
    - Answers every `OPTIONS` request directly with `200`.
  - `logging_middleware()`
    - Gives each request a correlation ID, stored in the environ context under `CONTEXT_ENVIRON_KEY`.
    - Logs the start of the request and its completion with the status code.
    - Warns about requests that take longer than 0.5 s.
    - `format_duration(seconds)` renders a duration in µs, ms or s.
  - `log_panic_middleware()` logs any unhandled exception from the application and returns a plain-text `500`.
  - `role_middleware(allowed_roles)` reads `user_role_id` (and `user_id`, for logging) from the stored claims. It answers with JSON:
    - `401` and code `INVALID_TOKEN` when there are no claims.
    - `403` and code `INSUFFICIENT_PRIVILEGE` when the role is not allowed.

    There are also three shortcuts: `admin_only()`, `admin_or_supervisor()` and `all_roles()`. They use `ROLE_ADMIN`, `ROLE_SUPERVISOR` and `ROLE_CLIENT`.
- **`trafficmanager.applog`** provides `Logger`, an immutable logger that carries structured fields.
  - `with_field`, `with_fields`, `with_error` and `with_context` each return a new logger.
  - In development (`APP_ENV` unset, empty, `development` or `dev`), only tracing fields and `user_*` fields are kept. Outside development, every field is kept.
  - `fatal` exits with status 1. `panic` raises `RuntimeError`.
  - Helper functions: `with_correlation_id`, `get_correlation_id`, `for_context`, `is_development` and `setup_test_logger`.
- **`trafficmanager.aggregation`** holds the data classes and pure functions for insights.
  - Data classes: `InsightFilters`, `AdAccount`, `CampaignInsight`, `AdAccountMetrics`, `Sale`, `SalesMetrics`, `Order`, `AdInsightEntry`, `SalesInsightEntry` and `AvailablePeriods`.
  - Functions:
    - `generate_date_range`
    - `sum_string_ints`
    - `update_campaign_metrics`
    - `calculate_derived_metrics`
    - `combine_ad_metrics`
    - `combine_sales_metrics`
    - `sales_metrics_by_origin`: splits orders into `Origin.SOCIAL_NETWORK` and `Origin.OTHERS` by their first customer origin.
    - `parse_month_year_to_period`
    - `available_periods`
- **`trafficmanager.insights`** provides `InsightService`, built from three objects that you supply: a Meta ad service, a sales service and an account repository. Optional arguments:
  - `social_origins`: the customer origins that count as social network.
  - `result_calculator`: computes result metrics from ad and sales metrics. Without it, `result_metrics` stays `None`.
  - `today`: a function that returns today's date.

  Call `with_cache(ad_repo, sales_repo, monthly_ad_repo, monthly_sales_repo)` to attach repositories.
  - When both daily repositories are set, `get_ad_account_by_id` reads cached days first. It fetches the missing days from the services, at most five at a time, and saves every fetched day except today.
  - `get_monthly_insights_by_period` and `get_available_monthly_periods` need both monthly repositories.

  Invalid requests raise `InsightError`.
- **`trafficmanager.ranking`** provides `StoreRankingService(repository)`, which returns `repository.get_store_ranking()`.
- **`trafficmanager.utils`** holds small helpers:
  - `parse_date`: `YYYY-MM-DD` to a date. An empty string gives `date.min`.
  - `make_request`: HTTP GET. Any status other than 200 raises `ConnectionError`.
  - `pretty_json`: tab-indented JSON.
  - `round_two_decimals`: rounds halves away from zero.
  - `generate_id`: returns a six-character alphanumeric ID.
- **`trafficmanager.account_errors`** provides `AccountError` (with `code`, `details` and `account_id`) and the `AccountErrorKind` enum of base failures.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Example

```python
from trafficmanager.middleware import chain, cors, logging_middleware, auth_middleware, admin_only

def app(environ, start_response):
    start_response("200 OK", [("Content-Type", "application/json")])
    return [b"{}"]

wsgi_app = chain(app, cors(), logging_middleware(), auth_middleware(auth_service), admin_only())
```

`auth_service` is any object with a `validate_token(token)` method that returns the user's claims or raises.

```python
from datetime import date
from trafficmanager.aggregation import generate_date_range, available_periods

generate_date_range(date(2024, 1, 30), date(2024, 2, 1))
# [date(2024, 1, 30), date(2024, 1, 31), date(2024, 2, 1)]
available_periods(["01-2024"], ["02-2024"]).periods  # ["01-2024", "02-2024"]
```

## What the package does not do

The package has no HTTP server, no routes, no command-line entry point and no storage. It contains no clients for the ad platform or the point-of-sale system, and no token issuing or validation. `InsightService`, `StoreRankingService` and `auth_middleware` work with service and repository objects that you supply. These objects must have the methods described in `trafficmanager.insights` and above.