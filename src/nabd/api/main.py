"""Nabd prompt gallery: FastAPI Application.

This module defines the application factory, all REST API routes, the error
handlers, and the ``main()`` CLI function that launches the uvicorn server.

Architecture
------------
- **Configuration** comes from :class:`~nabd.core.config.NabdConfig`
  (``NABD_*`` environment variables).
- **Persistence** is a single SQLite file behind
  :class:`~nabd.core.prompt_store.PromptStore` and
  :class:`~nabd.core.like_ledger.LikeLedger`.
- **Image generation** goes through
  :class:`~nabd.core.generation.GenerationGateway` (Gemini API).
- **Rate limiting** uses one process-scoped
  :class:`~nabd.core.rate_limiter.RateLimiter`; its sweeper task runs for
  the lifetime of the app.
- **Sessions** are anonymous; see :mod:`nabd.api.session`.

Endpoints
---------
========  ================================  ==================================
Method    Path                              Purpose
========  ================================  ==================================
GET       ``/api/health``                   Liveness and version
GET       ``/api/categories``               Category catalogue
GET       ``/api/prompts``                  Search, filter, sort, paginate
GET       ``/api/prompts/liked``            Prompt IDs liked by this session
GET       ``/api/prompts/{id}``             Single prompt
POST      ``/api/prompts``                  Submit a prompt
DELETE    ``/api/prompts/{id}``             Delete a prompt (cascades)
POST      ``/api/prompts/{id}/generate``    Generate an image
GET       ``/api/prompts/{id}/images``      Generated images, newest first
GET       ``/api/prompts/{id}/like``        Has this session liked it
POST      ``/api/prompts/{id}/like``        Like
DELETE    ``/api/prompts/{id}/like``        Unlike
GET       ``/api/share/{image_id}``         Share link for an image
========  ================================  ==================================

Error responses carry a ``detail`` message.  Validation failures return 400
with per-field ``errors``; quota breaches return 429 with ``retryAfter`` and
a ``Retry-After`` header.

Usage
-----
CLI (installed entry point)::

    nabd

Direct invocation::

    python -m nabd.api.main
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from nabd import __version__
from nabd.api.dependencies import (
    api_rate_limit,
    generate_rate_limit,
    get_config,
    get_gateway,
    get_ledger,
    get_store,
    write_rate_limit,
)
from nabd.api.models import (
    CategoryResponse,
    DeleteResponse,
    GeneratedImageResponse,
    GenerateResponse,
    LikeConflictResponse,
    LikedPromptsResponse,
    LikeRequest,
    LikeResponse,
    LikeStatusResponse,
    PaginationInfo,
    PromptCreate,
    PromptListResponse,
    PromptResponse,
    ShareResponse,
)
from nabd.api.session import ensure_session_id, get_session_id
from nabd.core.categories import CATEGORIES
from nabd.core.config import NabdConfig, config
from nabd.core.database import Database
from nabd.core.errors import (
    GenerationFailedError,
    PromptNotFoundError,
    RateLimitExceededError,
    StorageError,
)
from nabd.core.generation import GenerationGateway, generate_prompt_image
from nabd.core.like_ledger import LikeLedger
from nabd.core.prompt_store import PromptFilters, PromptStore
from nabd.core.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Application lifecycle: seeding and the rate-limit sweeper.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and shutdown lifecycle.

    On startup:
        Seeds the default prompts into an empty database (when enabled) and
        starts the rate-limiter sweeper task.

    On shutdown:
        Cancels the sweeper.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control back to the application for the duration of its lifetime.
    """
    app_config: NabdConfig = app.state.config

    # --- Startup -----------------------------------------------------------
    if app_config.seed_defaults:
        app.state.store.seed_default_prompts()

    sweeper = asyncio.create_task(
        app.state.limiter.run_sweeper(
            app_config.rate_limit_sweep_interval,
            app_config.rate_limit_window,
        )
    )

    yield  # Application runs here.

    # --- Shutdown ----------------------------------------------------------
    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper


# ---------------------------------------------------------------------------
# Helpers.
# ---------------------------------------------------------------------------


def _parse_int(value: str | None) -> int | None:
    """Parse a lenient integer query parameter; junk becomes ``None``."""
    if value is None or not value.strip():
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _require_prompt(store: PromptStore, prompt_id: str):
    prompt = store.get_prompt(prompt_id)
    if prompt is None:
        raise HTTPException(status_code=404, detail="Prompt not found")
    return prompt


def _like_conflict(response: Response, detail: str, session_id: str) -> JSONResponse:
    """Build the 400 reply for a like/unlike that changed nothing.

    A session cookie issued on *response* earlier in the request is copied
    over, since the returned response replaces it.
    """
    conflict = JSONResponse(
        status_code=400,
        content=LikeConflictResponse(detail=detail, session_id=session_id).model_dump(by_alias=True),
    )
    for cookie in response.headers.getlist("set-cookie"):
        conflict.headers.append("set-cookie", cookie)
    return conflict


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------

router = APIRouter(prefix="/api", dependencies=[Depends(api_rate_limit)])


@router.get("/health")
async def health() -> dict:
    return {"status": "ok", "version": __version__}


@router.get("/categories", response_model=list[CategoryResponse])
async def list_categories() -> list[CategoryResponse]:
    return [CategoryResponse.model_validate(category) for category in CATEGORIES]


@router.get("/prompts", response_model=PromptListResponse)
async def list_prompts(
    q: str | None = None,
    category: str | None = None,
    sort_by: str | None = Query(default=None, alias="sortBy"),
    min_likes: str | None = Query(default=None, alias="minLikes"),
    page: str | None = None,
    limit: str | None = None,
    store: PromptStore = Depends(get_store),
) -> PromptListResponse:
    """Return a filtered, sorted, paginated listing of prompts.

    Numeric parameters are parsed leniently: anything that is not an integer
    falls back to its default and out-of-range values are clamped.

    Args:
        q: Case-insensitive search over title, prompt text and description.
        category: Exact category match.
        sort_by: ``recent``, ``mostLiked`` or ``popular`` (default).
        min_likes: Inclusive minimum like count.
        page: One-based page number (default 1).
        limit: Page size, 1-50 (default 20).

    Returns:
        The page of prompts plus pagination metadata.
    """
    filters = PromptFilters(
        query=q or None,
        category=category or None,
        sort_by=sort_by or "popular",
        min_likes=_parse_int(min_likes),
    )
    result = store.list_prompts(filters, page=_parse_int(page), page_size=_parse_int(limit))

    return PromptListResponse(
        prompts=[PromptResponse.model_validate(p) for p in result.items],
        pagination=PaginationInfo(
            page=result.page,
            limit=result.page_size,
            total=result.total,
            total_pages=result.total_pages,
            has_more=result.has_more,
        ),
    )


# Declared before /prompts/{prompt_id} so "liked" is not taken as an ID.
@router.get("/prompts/liked", response_model=LikedPromptsResponse)
async def liked_prompts(
    session_id: str = Depends(get_session_id),
    ledger: LikeLedger = Depends(get_ledger),
) -> LikedPromptsResponse:
    liked = sorted(ledger.liked_prompt_ids(session_id))
    return LikedPromptsResponse(liked_prompt_ids=liked, session_id=session_id)


@router.get("/prompts/{prompt_id}", response_model=PromptResponse)
async def get_prompt(prompt_id: str, store: PromptStore = Depends(get_store)) -> PromptResponse:
    """Return a single prompt.

    Raises:
        HTTPException: 404 if the prompt does not exist.
    """
    return PromptResponse.model_validate(_require_prompt(store, prompt_id))


@router.post(
    "/prompts",
    response_model=PromptResponse,
    status_code=201,
    dependencies=[Depends(write_rate_limit)],
)
async def create_prompt(req: PromptCreate, store: PromptStore = Depends(get_store)) -> PromptResponse:
    """Submit a new prompt.

    Validation (lengths, category, no markup) happens in
    :class:`PromptCreate`; failures return 400 with per-field errors.
    """
    prompt = store.create_prompt(
        title=req.title,
        prompt_text=req.prompt_text,
        description=req.description,
        category=req.category,
    )
    return PromptResponse.model_validate(prompt)


@router.delete(
    "/prompts/{prompt_id}",
    response_model=DeleteResponse,
    dependencies=[Depends(write_rate_limit)],
)
async def delete_prompt(prompt_id: str, store: PromptStore = Depends(get_store)) -> DeleteResponse:
    """Delete a prompt together with its generated images and likes.

    Raises:
        HTTPException: 404 if the prompt does not exist.
    """
    if not store.delete_prompt(prompt_id):
        raise HTTPException(status_code=404, detail="Prompt not found")
    return DeleteResponse(success=True)


@router.post(
    "/prompts/{prompt_id}/generate",
    response_model=GenerateResponse,
    dependencies=[Depends(generate_rate_limit)],
)
async def generate_image(
    prompt_id: str,
    store: PromptStore = Depends(get_store),
    gateway: GenerationGateway = Depends(get_gateway),
) -> GenerateResponse:
    """Generate an image for a prompt and cache it.

    The prompt's usage counter is incremented as soon as the prompt is found,
    whether or not generation then succeeds.

    Raises:
        PromptNotFoundError: Rendered as 404.
        GenerationFailedError: Rendered as a generic 500.
    """
    image = await generate_prompt_image(store, gateway, prompt_id)
    return GenerateResponse(image_url=image.image_url, prompt_id=prompt_id, image_id=image.id)


@router.get("/prompts/{prompt_id}/images", response_model=list[GeneratedImageResponse])
async def list_images(prompt_id: str, store: PromptStore = Depends(get_store)) -> list[GeneratedImageResponse]:
    """Return every image generated for a prompt, newest first.

    An unknown prompt simply has no images.
    """
    return [GeneratedImageResponse.model_validate(img) for img in store.list_generated_images(prompt_id)]


@router.get("/prompts/{prompt_id}/like", response_model=LikeStatusResponse)
async def like_status(
    prompt_id: str,
    session_id: str = Depends(get_session_id),
    ledger: LikeLedger = Depends(get_ledger),
) -> LikeStatusResponse:
    return LikeStatusResponse(has_liked=ledger.has_liked(prompt_id, session_id), session_id=session_id)


@router.post(
    "/prompts/{prompt_id}/like",
    response_model=LikeResponse,
    responses={400: {"model": LikeConflictResponse, "description": "Already liked"}},
    dependencies=[Depends(write_rate_limit)],
)
async def like_prompt(
    prompt_id: str,
    request: Request,
    response: Response,
    body: LikeRequest | None = None,
    store: PromptStore = Depends(get_store),
    ledger: LikeLedger = Depends(get_ledger),
) -> LikeResponse | JSONResponse:
    """Like a prompt on behalf of the caller's session.

    Returns:
        ``{success, likesCount, sessionId}`` on success.  A repeated like
        returns 400 with ``detail="Already liked"`` and changes nothing.

    Raises:
        HTTPException: 404 if the prompt does not exist.
    """
    session_id = ensure_session_id(request, response, body.session_id if body else None)
    _require_prompt(store, prompt_id)

    if not ledger.like(prompt_id, session_id):
        return _like_conflict(response, "Already liked", session_id)

    return LikeResponse(
        success=True,
        likes_count=ledger.likes_count(prompt_id),
        session_id=session_id,
    )


@router.delete(
    "/prompts/{prompt_id}/like",
    response_model=LikeResponse,
    responses={400: {"model": LikeConflictResponse, "description": "Not liked yet"}},
    dependencies=[Depends(write_rate_limit)],
)
async def unlike_prompt(
    prompt_id: str,
    request: Request,
    response: Response,
    body: LikeRequest | None = None,
    store: PromptStore = Depends(get_store),
    ledger: LikeLedger = Depends(get_ledger),
) -> LikeResponse | JSONResponse:
    """Remove the caller's like from a prompt.

    Returns:
        ``{success, likesCount, sessionId}`` on success.  Unliking a prompt
        this session never liked returns 400 with ``detail="Not liked yet"``.

    Raises:
        HTTPException: 404 if the prompt does not exist.
    """
    session_id = ensure_session_id(request, response, body.session_id if body else None)
    _require_prompt(store, prompt_id)

    if not ledger.unlike(prompt_id, session_id):
        return _like_conflict(response, "Not liked yet", session_id)

    return LikeResponse(
        success=True,
        likes_count=ledger.likes_count(prompt_id),
        session_id=session_id,
    )


@router.get("/share/{image_id}", response_model=ShareResponse)
async def share_image(
    image_id: str,
    store: PromptStore = Depends(get_store),
    app_config: NabdConfig = Depends(get_config),
) -> ShareResponse:
    """Return a public share link for a generated image.

    Raises:
        HTTPException: 404 if the image does not exist.
    """
    if store.get_generated_image(image_id) is None:
        raise HTTPException(status_code=404, detail="Image not found")
    base_url = app_config.public_base_url.rstrip("/")
    return ShareResponse(share_url=f"{base_url}/share/{image_id}", image_id=image_id)


# ---------------------------------------------------------------------------
# Error handlers.
# ---------------------------------------------------------------------------


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = []
    for err in exc.errors():
        # Drop the leading "body"/"query" segment from the location
        loc = [str(part) for part in err.get("loc", ())[1:]]
        errors.append({"field": ".".join(loc) or None, "message": err.get("msg", "Invalid value")})
    return JSONResponse(status_code=400, content={"detail": "Validation error", "errors": errors})


async def _not_found_handler(request: Request, exc: PromptNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": "Prompt not found"})


async def _rate_limit_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
    logger.warning(f"Rate limit '{exc.scope}' exceeded by {request.client.host if request.client else '?'}")
    return JSONResponse(
        status_code=429,
        content={"detail": "Too many requests", "retryAfter": exc.retry_after},
        headers={"Retry-After": str(exc.retry_after)},
    )


async def _generation_failed_handler(request: Request, exc: GenerationFailedError) -> JSONResponse:
    return JSONResponse(status_code=500, content={"detail": "Failed to generate image"})


async def _storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error(f"Storage failure on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# ---------------------------------------------------------------------------
# Application factory.
# ---------------------------------------------------------------------------


def create_app(
    app_config: NabdConfig | None = None,
    gateway: GenerationGateway | None = None,
) -> FastAPI:
    """Build the FastAPI application and its services.

    Args:
        app_config: Configuration; defaults to the global ``config``.
        gateway: Generation gateway; defaults to one built from the config.

    Returns:
        A ready-to-serve :class:`FastAPI` instance.  Services are available on
        ``app.state`` as ``config``, ``store``, ``ledger``, ``gateway`` and
        ``limiter``.
    """
    app_config = app_config or config

    app = FastAPI(
        title="Nabd Prompt Gallery",
        description="Share, search and like image prompts, and generate images with Gemini.",
        version=__version__,
        lifespan=lifespan,
    )

    db = Database(app_config.database_path)
    app.state.config = app_config
    app.state.store = PromptStore(db)
    app.state.ledger = LikeLedger(db)
    app.state.gateway = gateway or GenerationGateway.from_config(app_config)
    app.state.limiter = RateLimiter()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_config.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Session-Id"],
        max_age=86400,
    )

    @app.middleware("http")
    async def log_api_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        if request.url.path.startswith("/api"):
            duration_ms = (time.perf_counter() - start) * 1000
            logger.info(f"{request.method} {request.url.path} {response.status_code} in {duration_ms:.0f}ms")
        return response

    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(PromptNotFoundError, _not_found_handler)
    app.add_exception_handler(RateLimitExceededError, _rate_limit_handler)
    app.add_exception_handler(GenerationFailedError, _generation_failed_handler)
    app.add_exception_handler(StorageError, _storage_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)

    app.include_router(router)
    return app


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host, port and log level from :data:`~nabd.core.config.config`
    (``NABD_SERVER_HOST``, ``NABD_SERVER_PORT``, ``NABD_LOG_LEVEL``).
    Defaults to ``0.0.0.0:5000``.

    This function is registered as the ``nabd`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    uvicorn.run(
        "nabd.api.main:create_app",
        factory=True,
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
