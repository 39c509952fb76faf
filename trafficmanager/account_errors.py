"""Errors raised by account operations."""

from __future__ import annotations

from enum import Enum


class AccountErrorKind(Enum):
    """The base failures an account operation can report."""

    ACCOUNT_ID_REQUIRED = "account ID is required"
    ACCOUNT_NOT_FOUND = "account not found"
    INVALID_TOKEN = "invalid token"
    TOKEN_VALIDATION_FAILED = "token validation failed"
    SSOTICA_CONNECTION = "error connecting to SSOtica"
    RENDER_SECRET_UPDATE = "error updating secret on render"
    META_INTEGRATION = "error fetching accounts from Meta"
    DATABASE_OPERATION = "database operation error"
    UPDATE_ACCOUNT = "error updating account"
    FETCH_ACCOUNTS = "error fetching accounts from database"
    GENERATE_ID = "error generating UUID"

    def __str__(self) -> str:
        return self.value


class AccountError(Exception):
    """An account failure with an API code, optional account id and details.

    ``kind`` is either an :class:`AccountErrorKind` or an underlying exception,
    which then becomes the ``__cause__``.
    """

    def __init__(
        self,
        kind: AccountErrorKind | BaseException,
        code: str,
        details: str = "",
        account_id: str = "",
    ):
        self.kind = kind
        self.code = code
        self.details = details
        self.account_id = account_id
        super().__init__(str(self))
        if isinstance(kind, BaseException):
            self.__cause__ = kind

    def __str__(self) -> str:
        base = str(self.kind)
        return f"{base}: {self.details}" if self.details else base