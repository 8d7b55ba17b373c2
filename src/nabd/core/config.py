"""Configuration management for the Nabd prompt gallery.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the NABD_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (NABD_* prefix)
2. .env file in the project root
3. Default values defined in NabdConfig

Example .env file:
    NABD_GEMINI_API_KEY=your-key
    NABD_DATABASE_PATH=data/nabd.sqlite3
    NABD_GENERATE_RATE_LIMIT=10
    NABD_ALLOWED_ORIGINS=["http://localhost:5000"]

Global Configuration Instance
------------------------------
A global ``config`` instance is created automatically at module import time.
The FastAPI application factory accepts an explicit instance so that tests can
run against a temporary database without touching the global one.

Rate Limit Quotas
-----------------
Three independent fixed-window quotas are applied per client address:

- ``api_rate_limit``: every ``/api`` request (default 100 per window)
- ``write_rate_limit``: create, delete, like and unlike (default 20)
- ``generate_rate_limit``: image generation only (default 10)

All three share ``rate_limit_window`` (seconds, default 60).
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class NabdConfig(BaseSettings):
    """Main configuration for the Nabd prompt gallery.

    Values are loaded from environment variables with the NABD_ prefix, with
    fallback to the defaults defined here.  The data directory (and the parent
    of ``database_path``) is created on initialisation.

    Attributes
    ----------
    Storage:
        data_dir : Path
            Directory holding the SQLite database
        database_path : Path | None
            SQLite file; defaults to ``data_dir / "nabd.sqlite3"``
        seed_defaults : bool
            Insert the curated default prompts when the table is empty

    Image Generation:
        gemini_api_key : str | None
            API key for the Gemini image model (generation fails without it)
        gemini_base_url : str | None
            Optional proxy base URL for the Gemini API
        gemini_model : str
            Image-capable Gemini model name
        generation_timeout : float
            Ceiling in seconds for a single remote call
        generation_max_attempts : int
            Total attempts before giving up
        generation_retry_delay : float
            Base delay; the wait before retry N is ``delay * N``

    Sessions and HTTP:
        session_cookie_name : str
            Cookie carrying the anonymous session identifier
        session_cookie_max_age : int
            Cookie lifetime in seconds (one year)
        allowed_origins : list[str]
            CORS origins
        public_base_url : str
            Base URL used for share links
        server_host / server_port : str / int
            uvicorn bind address
        log_level : str
            Root logging level used by ``main()``
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="NABD_",
        case_sensitive=False,
    )

    # Storage
    data_dir: Path = Field(
        default=Path("data"),
        description="Directory holding the SQLite database",
    )
    database_path: Path | None = Field(
        default=None,
        description="SQLite database file (defaults to data_dir/nabd.sqlite3)",
    )
    seed_defaults: bool = Field(
        default=True,
        description="Seed the curated default prompts into an empty database",
    )

    # Gemini image generation
    gemini_api_key: str | None = Field(
        default=None,
        description="API key for the Gemini image generation model",
    )
    gemini_base_url: str | None = Field(
        default=None,
        description="Optional base URL override for the Gemini API",
    )
    gemini_model: str = Field(
        default="gemini-2.5-flash-image",
        description="Gemini model used for image generation",
    )
    generation_timeout: float = Field(
        default=60.0,
        description="Timeout in seconds for a single generation call",
        gt=0,
    )
    generation_max_attempts: int = Field(
        default=3,
        description="Maximum number of generation attempts",
        ge=1,
        le=10,
    )
    generation_retry_delay: float = Field(
        default=1.0,
        description="Base retry delay in seconds (multiplied by attempt number)",
        ge=0,
    )

    # Rate limiting
    api_rate_limit: int = Field(default=100, ge=1, description="General API requests per window")
    write_rate_limit: int = Field(default=20, ge=1, description="Write operations per window")
    generate_rate_limit: int = Field(default=10, ge=1, description="Generation requests per window")
    rate_limit_window: float = Field(default=60.0, gt=0, description="Window length in seconds")
    rate_limit_sweep_interval: float = Field(
        default=300.0,
        gt=0,
        description="Seconds between evictions of expired rate-limit entries",
    )

    # Sessions
    session_cookie_name: str = Field(default="sessionId")
    session_cookie_max_age: int = Field(
        default=365 * 24 * 60 * 60,
        description="Session cookie lifetime in seconds",
    )

    # HTTP server
    allowed_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:5000", "http://localhost:3000"],
        description="Origins allowed by the CORS middleware",
    )
    public_base_url: str = Field(
        default="http://localhost:5000",
        description="Public base URL used when building share links",
    )
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address (0.0.0.0 for local network)",
    )
    server_port: int = Field(
        default=5000,
        description="Server port",
        ge=1024,
        le=65535,
    )
    log_level: str = Field(default="INFO")

    def __init__(self, **kwargs):
        """Initialize configuration and create the data directory.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        if self.database_path is None:
            self.database_path = self.data_dir / "nabd.sqlite3"

        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)


# Global configuration instance, loaded from NABD_* environment variables.
config = NabdConfig()
