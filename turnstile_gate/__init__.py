"""Cloudflare Turnstile request gate for Starlette and FastAPI."""

from turnstile_gate.config import FailurePolicy, TurnstileConfig
from turnstile_gate.errors import (
    ClientDisconnected,
    ConfigurationError,
    TransportError,
    TurnstileError,
    TurnstileRejection,
)
from turnstile_gate.middleware import TurnstileGate, TurnstileMiddleware, rejection_handler
from turnstile_gate.models import VerificationRequest, VerificationResult
from turnstile_gate.services.turnstile import TurnstileClient

__all__ = [
    "ClientDisconnected",
    "ConfigurationError",
    "FailurePolicy",
    "TransportError",
    "TurnstileClient",
    "TurnstileConfig",
    "TurnstileError",
    "TurnstileGate",
    "TurnstileMiddleware",
    "TurnstileRejection",
    "VerificationRequest",
    "VerificationResult",
    "rejection_handler",
]
