"""Pydantic request and response models for the Nabd API.

These models define the JSON schema for every API endpoint.  FastAPI uses
them for request validation, serialisation, and OpenAPI documentation.  Field
names are snake_case in Python and camelCase on the wire (``promptText``,
``likesCount``); request bodies accept either spelling.

Models
------
PromptCreate
    Payload for ``POST /api/prompts``.  Enforces the length limits, the
    category set, and the no-markup rule for title and description.
LikeRequest
    Optional body for like/unlike carrying an explicit ``sessionId``.
PromptResponse, GeneratedImageResponse, PromptListResponse, ...
    Response shapes, built from the core dataclasses via ``from_attributes``.
"""

from __future__ import annotations

import re
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator
from pydantic.alias_generators import to_camel

from nabd.core.categories import CATEGORY_IDS, is_valid_category

# Anything that looks like an HTML/XML tag.
MARKUP_PATTERN = re.compile(r"<[^>]*>")

TitleStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=100)]
PromptTextStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=10, max_length=2000)]
DescriptionStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=5, max_length=500)]


class CamelModel(BaseModel):
    """Base model serialising field names as camelCase."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ---------------------------------------------------------------------------
# Requests.
# ---------------------------------------------------------------------------


class PromptCreate(CamelModel):
    """Request body for ``POST /api/prompts``.

    Attributes:
        title: 3-100 characters after trimming, no markup.
        prompt_text: 10-2000 characters after trimming; sent to the model.
        description: 5-500 characters after trimming, no markup.
        category: One of the fixed category identifiers.
    """

    title: TitleStr = Field(..., description="Short display title.")
    prompt_text: PromptTextStr = Field(..., description="Instruction sent to the image model.")
    description: DescriptionStr = Field(..., description="What the prompt produces.")
    category: str = Field(..., description=f"One of: {', '.join(sorted(CATEGORY_IDS))}.")

    @field_validator("title", "description")
    @classmethod
    def reject_markup(cls, value: str) -> str:
        if MARKUP_PATTERN.search(value):
            raise ValueError("must not contain markup")
        return value

    @field_validator("category")
    @classmethod
    def check_category(cls, value: str) -> str:
        if not is_valid_category(value):
            raise ValueError(f"must be one of: {', '.join(sorted(CATEGORY_IDS))}")
        return value


class LikeRequest(CamelModel):
    """Optional body for ``POST``/``DELETE /api/prompts/{id}/like``.

    Attributes:
        session_id: Explicit session identifier.  Takes precedence over the
            cookie, header and query parameter when present.
    """

    session_id: str | None = Field(default=None, max_length=128)


# ---------------------------------------------------------------------------
# Responses.
# ---------------------------------------------------------------------------


class PromptResponse(CamelModel):
    id: str
    title: str
    prompt_text: str
    description: str
    category: str
    generated_image_url: str | None = None
    usage_count: int
    likes_count: int
    created_at: str


class GeneratedImageResponse(CamelModel):
    id: str
    prompt_id: str
    image_url: str
    created_at: str


class PaginationInfo(CamelModel):
    """Pagination block of ``GET /api/prompts``.

    Attributes:
        page: Resolved one-based page number.
        limit: Resolved page size.
        total: Matching prompts before pagination.
        total_pages: ``ceil(total / limit)``, at least 1.
        has_more: Whether a further page has items.
    """

    page: int
    limit: int
    total: int
    total_pages: int
    has_more: bool


class PromptListResponse(CamelModel):
    prompts: list[PromptResponse]
    pagination: PaginationInfo


class GenerateResponse(CamelModel):
    image_url: str
    prompt_id: str
    image_id: str


class LikeResponse(CamelModel):
    success: bool
    likes_count: int
    session_id: str


class LikeConflictResponse(CamelModel):
    """400 body for a repeated like or an unlike without a like."""

    detail: str
    session_id: str


class LikeStatusResponse(CamelModel):
    has_liked: bool
    session_id: str


class LikedPromptsResponse(CamelModel):
    liked_prompt_ids: list[str]
    session_id: str


class CategoryResponse(CamelModel):
    id: str
    name_ar: str
    name_en: str
    icon: str


class ShareResponse(CamelModel):
    share_url: str
    image_id: str


class DeleteResponse(CamelModel):
    success: bool
