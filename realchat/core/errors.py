from __future__ import annotations

from dataclasses import dataclass

AUTH_CRITICAL_ENDPOINTS = ("/me",)
AUTH_CRITICAL_PREFIX = "/auth/"


class APIError(Exception):
    def __init__(
        self,
        *,
        status_code: int,
        code: str,
        message: str,
        details: object | None = None,
    ) -> None:
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details
        super().__init__(message)

    @property
    def is_unauthorized(self) -> bool:
        return self.status_code == 401

    @property
    def is_network_error(self) -> bool:
        return self.status_code == 0


def is_auth_critical_endpoint(endpoint: str) -> bool:
    path = endpoint.split("?", 1)[0]
    return path in AUTH_CRITICAL_ENDPOINTS or path.startswith(AUTH_CRITICAL_PREFIX)


def error_code_for_status(status_code: int) -> str:
    if status_code == 0:
        return "network_error"
    if status_code == 401:
        return "unauthorized"
    if status_code == 403:
        return "forbidden"
    if status_code == 404:
        return "not_found"
    if status_code == 409:
        return "conflict"
    if 400 <= status_code < 500:
        return "bad_request"
    return "server_error"


@dataclass(slots=True)
class ProtocolError(Exception):
    code: str
    message: str


class TransportError(Exception):
    pass


class TransportAuthRejected(TransportError):
    def __init__(self, status: int, message: str = "") -> None:
        self.status = status
        super().__init__(message or f"Handshake rejected with HTTP {status}")


class InvalidTransitionError(RuntimeError):
    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Invalid connection status transition {current} -> {target}")
