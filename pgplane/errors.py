from __future__ import annotations

from typing import Any, Dict


class ControlPlaneError(Exception):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> Dict[str, Any]:
        return {"detail": self.message}


class ValidationError(ControlPlaneError):
    status_code = 400


class AuthenticationRequiredError(ControlPlaneError):
    status_code = 401


class PermissionDeniedError(ControlPlaneError):
    status_code = 403


class NotFoundError(ControlPlaneError):
    status_code = 404


class PreconditionFailedError(ControlPlaneError):
    status_code = 412


class ConnectionTestFailedError(ControlPlaneError):
    """A freshly supplied connection failed its live check; nothing was written."""

    status_code = 400

    def __init__(self, error: str, *, allow_force: bool = True) -> None:
        super().__init__(f"Connection test failed: {error}")
        self.error = error
        self.allow_force = allow_force

    def to_payload(self) -> Dict[str, Any]:
        return {
            "detail": self.message,
            "connection_error": self.error,
            "allow_force": self.allow_force,
        }
