"""WSGI middleware, structured logging and ad/sales insight aggregation for a traffic management API."""

__version__ = "0.1.0"

__all__ = [
    "account_errors",
    "aggregation",
    "applog",
    "insights",
    "middleware",
    "ranking",
    "utils",
]