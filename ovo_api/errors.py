"""Shared exception types carrying API error contract fields."""

from __future__ import annotations


class ServiceError(Exception):
    """Base error with a client-facing message, machine code, and HTTP status."""

    def __init__(self, detail: str, code: str, status_code: int) -> None:
        super().__init__(detail)
        self.detail = detail
        self.code = code
        self.status_code = status_code


class ConfigurationError(ServiceError):
    """Raised when a required secret or provider setting is missing at runtime.

    The client only ever sees a generic message; ``setting`` names what is
    missing and is meant for server-side logs.
    """

    def __init__(self, setting: str) -> None:
        super().__init__("Server configuration error.", "configuration_error", 500)
        self.setting = setting
