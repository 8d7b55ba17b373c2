"""FastAPI dependencies for shared services and request quotas.

The services are created once by :func:`nabd.api.main.create_app` and kept on
``app.state``; these helpers hand them to route handlers so nothing reaches
for a module-level singleton.
"""

from __future__ import annotations

from fastapi import Request

from nabd.core.config import NabdConfig
from nabd.core.errors import RateLimitExceededError
from nabd.core.generation import GenerationGateway
from nabd.core.like_ledger import LikeLedger
from nabd.core.prompt_store import PromptStore
from nabd.core.rate_limiter import RateLimiter


def get_config(request: Request) -> NabdConfig:
    return request.app.state.config


def get_store(request: Request) -> PromptStore:
    return request.app.state.store


def get_ledger(request: Request) -> LikeLedger:
    return request.app.state.ledger


def get_gateway(request: Request) -> GenerationGateway:
    return request.app.state.gateway


def get_limiter(request: Request) -> RateLimiter:
    return request.app.state.limiter


def client_key(request: Request) -> str:
    """Identify the client for rate limiting by its network address."""
    return request.client.host if request.client else "unknown"


class RateLimit:
    """Dependency enforcing one named quota.

    Args:
        scope: Quota name, used as the counter namespace.
        limit_setting: Name of the :class:`NabdConfig` field holding the
            per-window limit.

    Raises:
        RateLimitExceededError: When the client is over quota.  Raised before
            the route handler runs, so a rejected request has no side effects.
    """

    def __init__(self, scope: str, limit_setting: str) -> None:
        self.scope = scope
        self.limit_setting = limit_setting

    def __call__(self, request: Request) -> None:
        config: NabdConfig = request.app.state.config
        limiter: RateLimiter = request.app.state.limiter

        result = limiter.hit(
            self.scope,
            client_key(request),
            getattr(config, self.limit_setting),
            config.rate_limit_window,
        )
        if not result.allowed:
            raise RateLimitExceededError(self.scope, result.retry_after)


api_rate_limit = RateLimit("api", "api_rate_limit")
write_rate_limit = RateLimit("write", "write_rate_limit")
generate_rate_limit = RateLimit("generate", "generate_rate_limit")
