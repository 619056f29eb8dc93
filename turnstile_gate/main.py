import os
from dataclasses import replace
from typing import Any

import uvicorn
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request

from turnstile_gate.config import TurnstileConfig
from turnstile_gate.errors import TurnstileRejection
from turnstile_gate.middleware import TurnstileGate, TurnstileMiddleware, rejection_handler
from turnstile_gate.models import VerificationResult
from turnstile_gate.services.turnstile import TurnstileClient
from turnstile_gate.utils.logging_config import get_logger, setup_logging

logger = get_logger(__name__)


def create_app(
    config: TurnstileConfig | None = None,
    client: TurnstileClient | None = None,
) -> FastAPI:
    """Build the demo app: ``/submit`` is gated by middleware, ``/comment`` by a dependency.

    Args:
        config: Gate configuration; read from ``TURNSTILE_*`` environment variables when omitted
        client: Verification client shared by the middleware and the route dependency
    """
    if config is None:
        load_dotenv()
        setup_logging(
            level=os.getenv("LOG_LEVEL", "INFO"),
            json_logs=os.getenv("LOG_FORMAT", "json").lower() != "console",
        )
        config = TurnstileConfig.from_env()

    app = FastAPI(
        title="Turnstile Gate Demo",
        description="FastAPI server protected by Cloudflare Turnstile",
        version="0.1.0",
    )

    # Middleware gates everything except /health and the dependency-gated route
    middleware_config = replace(
        config, exempt_paths=config.exempt_paths | {"/health", "/comment"}
    )
    app.add_middleware(TurnstileMiddleware, config=middleware_config, client=client)

    gate = TurnstileGate(config, client)
    app.add_exception_handler(TurnstileRejection, rejection_handler)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/submit")
    async def submit(request: Request) -> dict[str, Any]:
        form = await request.form()
        verification: VerificationResult | None = request.state.turnstile
        return {
            "received": {
                k: v
                for k, v in form.items()
                if isinstance(v, str) and k != config.form_field
            },
            "hostname": verification.hostname if verification else None,
        }

    @app.post("/comment")
    async def comment(
        verification: VerificationResult | None = Depends(gate.dependency()),
    ) -> dict[str, Any]:
        return {"verified": verification is not None}

    logger.info("Turnstile demo app ready")
    return app


def main():
    uvicorn.run(
        "turnstile_gate.main:create_app",
        factory=True,
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
    )


if __name__ == "__main__":
    main()
