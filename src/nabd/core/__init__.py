"""Core services for the Nabd prompt gallery.

- **config.py**: Environment-based configuration using Pydantic Settings
- **database.py**: SQLite schema and transactional connections
- **prompt_store.py**: Prompt CRUD, generated images, filtered listing
- **like_ledger.py**: Anonymous per-session likes and like counters
- **generation.py**: Gemini image generation with timeout and retry
- **rate_limiter.py**: In-process fixed-window request quotas
- **errors.py**: Exception types mapped to HTTP responses by the API
"""

from nabd.core.config import NabdConfig, config
from nabd.core.database import Database
from nabd.core.errors import (
    GenerationFailedError,
    NabdError,
    PromptNotFoundError,
    RateLimitExceededError,
    StorageError,
)
from nabd.core.like_ledger import LikeLedger
from nabd.core.prompt_store import PromptFilters, PromptStore
from nabd.core.rate_limiter import RateLimiter

__all__ = [
    "Database",
    "GenerationFailedError",
    "LikeLedger",
    "NabdConfig",
    "NabdError",
    "PromptFilters",
    "PromptNotFoundError",
    "PromptStore",
    "RateLimitExceededError",
    "RateLimiter",
    "StorageError",
    "config",
]
