"""WSGI middleware: authentication, CORS, request logging, crash recovery and roles."""

from __future__ import annotations

import json
import sys
import time
import traceback
from collections.abc import Callable, Iterable, Iterator
from http import HTTPStatus
from typing import Any

from trafficmanager import applog

StartResponse = Callable[..., Any]
WSGIApp = Callable[[dict, StartResponse], Iterable[bytes]]
Middleware = Callable[[WSGIApp], WSGIApp]

USER_ENVIRON_KEY = "trafficmanager.user"
CONTEXT_ENVIRON_KEY = "trafficmanager.context"

PUBLIC_PATHS = frozenset({"/v1/login", "/healthcheck", "/v1/register"})

ALLOWED_ORIGINS = (
    "http://localhost:3000",
    "http://localhost:4001",
    "https://traffic-manager-web.vercel.app",
    "https://traffic-manager-web-ten.vercel.app",
)

_CORS_HEADERS = (
    ("Access-Control-Allow-Methods", "GET, POST, OPTIONS, PUT, DELETE"),
    ("Access-Control-Allow-Headers", "Accept, Authorization, Content-Type, X-Requested-With"),
    ("Access-Control-Allow-Credentials", "true"),
    ("Content-Type", "application/json"),
    ("Access-Control-Max-Age", "86400"),
)

ROLE_ADMIN = 1
ROLE_SUPERVISOR = 2
ROLE_CLIENT = 3

SLOW_REQUEST_SECONDS = 0.5


def _status_line(code: int) -> str:
    return f"{code} {HTTPStatus(code).phrase}"


def _request_path(environ: dict) -> str:
    path = environ.get("SCRIPT_NAME", "") + environ.get("PATH_INFO", "")
    return path or "/"


def _text_error(
    start_response: StartResponse, code: int, message: str, exc_info: Any = None
) -> list[bytes]:
    body = (message + "\n").encode("utf-8")
    headers = [
        ("Content-Type", "text/plain; charset=utf-8"),
        ("X-Content-Type-Options", "nosniff"),
        ("Content-Length", str(len(body))),
    ]
    start_response(_status_line(code), headers, exc_info)
    return [body]


def _json_error(
    start_response: StartResponse, code: int, error_code: str, message: str
) -> list[bytes]:
    body = json.dumps({"code": error_code, "message": message}, ensure_ascii=False).encode("utf-8")
    headers = [
        ("Content-Type", "application/json"),
        ("Content-Length", str(len(body))),
    ]
    start_response(_status_line(code), headers)
    return [body]


def auth_middleware(auth_service: Any) -> Middleware:
    """Require a valid bearer token except on the public paths.

    ``auth_service.validate_token(token)`` returns the claims or raises; the
    claims are stored in the environ under ``USER_ENVIRON_KEY``.
    """

    def middleware(app: WSGIApp) -> WSGIApp:
        def wrapped(environ: dict, start_response: StartResponse) -> Iterable[bytes]:
            if _request_path(environ) in PUBLIC_PATHS:
                return app(environ, start_response)

            header = environ.get("HTTP_AUTHORIZATION", "")
            if not header:
                return _text_error(
                    start_response, HTTPStatus.UNAUTHORIZED, "Authorization header is required"
                )
            if not header.startswith("Bearer "):
                return _text_error(
                    start_response, HTTPStatus.UNAUTHORIZED, "Bearer token is required"
                )

            try:
                claims = auth_service.validate_token(header[len("Bearer "):])
            except Exception:
                return _text_error(start_response, HTTPStatus.UNAUTHORIZED, "Invalid token")

            environ[USER_ENVIRON_KEY] = claims
            return app(environ, start_response)

        return wrapped

    return middleware


def is_origin_allowed(origin: str) -> bool:
    """True when ``origin`` is one of the allowed front-end origins."""
    return origin in ALLOWED_ORIGINS


def cors() -> Middleware:
    """Add CORS headers for allowed origins and answer preflight requests."""

    def middleware(app: WSGIApp) -> WSGIApp:
        def wrapped(environ: dict, start_response: StartResponse) -> Iterable[bytes]:
            origin = environ.get("HTTP_ORIGIN", "")
            extra = (
                [("Access-Control-Allow-Origin", origin), *_CORS_HEADERS]
                if is_origin_allowed(origin)
                else []
            )

            if environ.get("REQUEST_METHOD") == "OPTIONS":
                start_response(_status_line(HTTPStatus.OK), [*extra, ("Content-Length", "0")])
                return [b""]

            if not extra:
                return app(environ, start_response)

            def cors_start_response(status: str, headers: list, exc_info: Any = None) -> Any:
                names = {name.lower() for name, _ in headers}
                merged = [item for item in extra if item[0].lower() not in names]
                merged.extend(headers)
                return start_response(status, merged, exc_info)

            return app(environ, cors_start_response)

        return wrapped

    return middleware


def format_duration(seconds: float) -> str:
    """Human-readable duration: microseconds, milliseconds or seconds."""
    micros = round(seconds * 1_000_000)
    if micros < 1_000:
        return f"{micros} µs"
    if micros < 1_000_000:
        return f"{micros // 1_000} ms"
    return f"{seconds:.2f} s"


def _iterate_then(result: Iterable[bytes], on_done: Callable[[], None]) -> Iterator[bytes]:
    try:
        yield from result
    finally:
        close = getattr(result, "close", None)
        if close is not None:
            close()
        on_done()


def _log_request_start(environ: dict, method: str, path: str, correlation_id: str) -> None:
    logger = applog.default_logger
    if applog.is_development():
        logger.with_fields({"method": method, "path": path}).info("→ Iniciando requisição")
        return
    try:
        content_length = int(environ.get("CONTENT_LENGTH") or 0)
    except ValueError:
        content_length = -1
    logger.with_fields(
        {
            "correlation_id": correlation_id,
            "remote_addr": environ.get("REMOTE_ADDR", ""),
            "method": method,
            "path": path,
            "query": environ.get("QUERY_STRING", ""),
            "user_agent": environ.get("HTTP_USER_AGENT", ""),
            "referer": environ.get("HTTP_REFERER", ""),
            "content_type": environ.get("CONTENT_TYPE", ""),
            "content_length": content_length,
        }
    ).info("Requisição iniciada")


def _log_request_end(
    method: str, path: str, status_code: int, elapsed: float, correlation_id: str
) -> None:
    base = applog.default_logger
    slow = elapsed > SLOW_REQUEST_SECONDS
    millis = int(elapsed * 1000)

    if applog.is_development():
        symbol = "✗" if status_code >= 400 else "✓"
        message = f"{symbol} Completada em {format_duration(elapsed)}"
        logger = base.with_fields({"method": method, "path": path, "status_code": status_code})
        if status_code >= 500:
            logger.error(message)
        elif status_code >= 400:
            logger.warning(message)
        else:
            logger.info(message)
        if slow:
            base.warning("⚠ Requisição lenta: %s %s (%dms)", method, path, millis)
        return

    fields = {
        "correlation_id": correlation_id,
        "method": method,
        "path": path,
        "duration_ms": millis,
        "status_code": status_code,
    }
    logger = base.with_fields(fields)
    if status_code >= 500:
        logger.error("Requisição finalizada com erro")
    elif status_code >= 400:
        logger.warning("Requisição finalizada com aviso")
    else:
        logger.info("Requisição finalizada com sucesso")
    if slow:
        base.with_fields(fields).warning("Requisição lenta: %s", format_duration(elapsed))


def logging_middleware() -> Middleware:
    """Give each request a correlation id and log its start and completion."""

    def middleware(app: WSGIApp) -> WSGIApp:
        def wrapped(environ: dict, start_response: StartResponse) -> Iterable[bytes]:
            context, correlation_id = applog.with_correlation_id(
                environ.get(CONTEXT_ENVIRON_KEY)
            )
            environ[CONTEXT_ENVIRON_KEY] = context
            method = environ.get("REQUEST_METHOD", "GET")
            path = _request_path(environ)

            _log_request_start(environ, method, path, correlation_id)

            status_code = int(HTTPStatus.OK)
            started = time.perf_counter()

            def capturing_start_response(status: str, headers: list, exc_info: Any = None) -> Any:
                nonlocal status_code
                status_code = int(status.split(" ", 1)[0])
                return start_response(status, headers, exc_info)

            result = app(environ, capturing_start_response)

            def finished() -> None:
                elapsed = time.perf_counter() - started
                _log_request_end(method, path, status_code, elapsed, correlation_id)

            return _iterate_then(result, finished)

        return wrapped

    return middleware


def _report_crash(environ: dict, exc: BaseException, stack_trace: str) -> None:
    path = _request_path(environ)
    logger = applog.default_logger
    if applog.is_development():
        logger.with_fields({"error": str(exc), "path": path}).error("❌ PANIC na aplicação")
        print(
            f"\n\n=== STACK TRACE ===\n{stack_trace}\n=================\n",
            file=sys.stderr,
        )
        return
    correlation_id = applog.get_correlation_id(environ.get(CONTEXT_ENVIRON_KEY))
    crash_logger = logger.with_fields(
        {
            "correlation_id": correlation_id,
            "panic_error": str(exc),
            "method": environ.get("REQUEST_METHOD", "GET"),
            "path": path,
        }
    )
    crash_logger.error("Erro não tratado na aplicação")
    crash_logger.with_field("stack_trace", stack_trace).error("Stack trace do erro")


def log_panic_middleware() -> Middleware:
    """Turn any unhandled exception into a logged 500 response."""

    def middleware(app: WSGIApp) -> WSGIApp:
        def wrapped(environ: dict, start_response: StartResponse) -> Iterable[bytes]:
            result = None
            try:
                result = app(environ, start_response)
                return list(result)
            except Exception as exc:
                _report_crash(environ, exc, traceback.format_exc())
                return _text_error(
                    start_response,
                    HTTPStatus.INTERNAL_SERVER_ERROR,
                    "Erro interno no servidor",
                    sys.exc_info(),
                )
            finally:
                close = getattr(result, "close", None)
                if close is not None:
                    close()

        return wrapped

    return middleware


def role_middleware(allowed_roles: Iterable[int]) -> Middleware:
    """Allow the request only when the authenticated user's role is listed."""
    allowed = frozenset(allowed_roles)

    def middleware(app: WSGIApp) -> WSGIApp:
        def wrapped(environ: dict, start_response: StartResponse) -> Iterable[bytes]:
            claims = environ.get(USER_ENVIRON_KEY)
            role = getattr(claims, "user_role_id", None)
            if claims is None or role is None:
                applog.default_logger.warning("Tentativa de acesso sem autenticação")
                return _json_error(
                    start_response,
                    HTTPStatus.UNAUTHORIZED,
                    "INVALID_TOKEN",
                    "Usuário não autenticado",
                )
            if role not in allowed:
                applog.default_logger.warning(
                    "Acesso negado para usuário ID=%s, Role=%s",
                    getattr(claims, "user_id", None),
                    role,
                )
                return _json_error(
                    start_response,
                    HTTPStatus.FORBIDDEN,
                    "INSUFFICIENT_PRIVILEGE",
                    "Você não tem permissão para acessar este recurso",
                )
            return app(environ, start_response)

        return wrapped

    return middleware


def admin_only() -> Middleware:
    """Allow administrators only."""
    return role_middleware([ROLE_ADMIN])


def admin_or_supervisor() -> Middleware:
    """Allow administrators and supervisors."""
    return role_middleware([ROLE_ADMIN, ROLE_SUPERVISOR])


def all_roles() -> Middleware:
    """Allow every known role."""
    return role_middleware([ROLE_ADMIN, ROLE_SUPERVISOR, ROLE_CLIENT])


def chain(app: WSGIApp, *args: Middleware) -> WSGIApp:
    """Wrap ``app`` so the first middleware given is the outermost."""
    for middleware in reversed(args):
        app = middleware(app)
    return app