"""Exceptions raised by the S3 upload store."""

from __future__ import annotations

from collections.abc import Iterable


class S3Error(Exception):
    """An error reported by the S3 service, identified by its error code."""

    def __init__(self, code: str, message: str = "") -> None:
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")


class HTTPError(Exception):
    """An error that carries the HTTP status code to answer the client with."""

    def __init__(self, message: str, status_code: int) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class NotFoundError(HTTPError):
    """The requested upload does not exist."""

    def __init__(self, message: str = "upload not found") -> None:
        super().__init__(message, 404)


class MultiError(Exception):
    """Several errors that occurred during one operation."""

    def __init__(self, errors: Iterable[BaseException]) -> None:
        self.errors = list(errors)
        lines = "".join(f"\t{error}\n" for error in self.errors)
        super().__init__(f"Multiple errors occurred:\n{lines}")