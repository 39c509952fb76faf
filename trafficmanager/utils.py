"""Small helpers shared across the service: dates, HTTP, JSON, rounding and ids."""

from __future__ import annotations

import json
import logging
import math
import re
import secrets
import urllib.error
import urllib.request
from datetime import date, datetime
from typing import Any

ID_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"
ID_LENGTH = 6

_DATE_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}", re.ASCII)
_log = logging.getLogger(__name__)


def parse_date(date_str: str) -> date:
    """Parse a ``YYYY-MM-DD`` string.

    An empty string yields the zero date, 0001-01-01. Anything that is not a
    valid calendar date in that exact layout raises ``ValueError``.
    """
    if not date_str:
        return date.min
    if not _DATE_PATTERN.fullmatch(date_str):
        raise ValueError(f"invalid date {date_str!r}: expected YYYY-MM-DD")
    return datetime.strptime(date_str, "%Y-%m-%d").date()


def make_request(url: str) -> bytes:
    """GET ``url`` and return the body; any status other than 200 raises ``ConnectionError``."""
    try:
        with urllib.request.urlopen(url) as response:
            status, reason = response.status, response.reason
            body = response.read()
    except urllib.error.HTTPError as exc:
        with exc:
            raise ConnectionError(
                f"Error on Request: {url} status: {exc.code} {exc.reason}"
            ) from exc
    if status != 200:
        raise ConnectionError(f"Error on Request: {url} status: {status} {reason}")
    return body


def pretty_json(value: Any) -> str:
    """Render ``value`` as tab-indented JSON.

    Raw ``bytes`` are treated as an already encoded document and keep their key
    order; other values are encoded with sorted mapping keys. A value that
    cannot be encoded or parsed yields an empty string.
    """
    if isinstance(value, (bytes, bytearray)):
        try:
            data = json.loads(value)
        except ValueError as exc:
            _log.error("invalid JSON document: %s", exc)
            return ""
        return json.dumps(data, indent="\t", ensure_ascii=False)
    try:
        return json.dumps(
            value, indent="\t", ensure_ascii=False, sort_keys=True, allow_nan=False
        )
    except (TypeError, ValueError) as exc:
        _log.error("value cannot be encoded as JSON: %s", exc)
        return ""


def round_two_decimals(value: float) -> float:
    """Round to two decimal places, halves away from zero."""
    if value == 0:
        return 0.0
    scaled = value * 100
    if not math.isfinite(scaled):
        return scaled / 100
    whole = math.trunc(scaled)
    if abs(scaled - whole) >= 0.5:
        whole += 1 if scaled > 0 else -1
    return whole / 100


def generate_id() -> str:
    """Return a random six-character alphanumeric identifier."""
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(ID_LENGTH))