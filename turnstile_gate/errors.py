"""Turnstile error taxonomy."""

from collections.abc import Iterable

from starlette.responses import JSONResponse

from turnstile_gate.models import RejectionBody

# Error codes raised by the gate itself, alongside Cloudflare's own codes
MISSING_INPUT_RESPONSE = "missing-input-response"
INVALID_INPUT_RESPONSE = "invalid-input-response"
HOSTNAME_MISMATCH = "hostname-mismatch"
ACTION_MISMATCH = "action-mismatch"
MISSING_REMOTE_IP = "missing-remote-ip"

# nginx's "client closed request"; the client never sees it
CLIENT_CLOSED_REQUEST = 499


class TurnstileError(Exception):
    """Base class for all Turnstile gate errors."""


class ConfigurationError(TurnstileError, ValueError):
    """Invalid gate configuration, raised at construction time."""


class TransportError(TurnstileError):
    """The verification service could not be reached or gave an unusable answer.

    This is distinct from a rejected token: the service never returned a verdict.
    """


class ClientDisconnected(TurnstileError):
    """The client went away while its request was being verified."""


class TurnstileRejection(TurnstileError):
    """A request that must not reach the protected handler."""

    def __init__(
        self,
        message: str,
        error_codes: Iterable[str] = (),
        status_code: int = 403,
    ):
        super().__init__(message)
        self.message = message
        self.error_codes = list(error_codes)
        self.status_code = status_code

    @classmethod
    def missing_token(cls) -> "TurnstileRejection":
        return cls(
            "CAPTCHA verification failed: token missing",
            [MISSING_INPUT_RESPONSE],
        )

    @classmethod
    def missing_remote_ip(cls) -> "TurnstileRejection":
        return cls(
            "CAPTCHA verification failed: client information missing",
            [MISSING_REMOTE_IP],
            status_code=400,
        )

    @classmethod
    def verification_failed(cls, error_codes: Iterable[str]) -> "TurnstileRejection":
        return cls("CAPTCHA verification failed: please try again", error_codes)

    @classmethod
    def client_closed(cls) -> "TurnstileRejection":
        return cls("Client closed request", status_code=CLIENT_CLOSED_REQUEST)

    @classmethod
    def service_unavailable(cls) -> "TurnstileRejection":
        return cls("CAPTCHA service temporarily unavailable", status_code=503)

    def to_body(self) -> RejectionBody:
        return RejectionBody(message=self.message, error_codes=self.error_codes)

    def to_response(self) -> JSONResponse:
        return JSONResponse(self.to_body().model_dump(), status_code=self.status_code)
