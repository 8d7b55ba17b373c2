"""Shared pytest fixtures for Nabd tests."""

import shutil
import tempfile
from pathlib import Path
from types import SimpleNamespace
from typing import Generator

import pytest
from fastapi.testclient import TestClient

from nabd.api.main import create_app
from nabd.core.config import NabdConfig
from nabd.core.database import Database
from nabd.core.generation import GenerationGateway
from nabd.core.like_ledger import LikeLedger
from nabd.core.prompt_store import PromptStore


def make_image_response(data=b"fake-png-bytes", mime_type="image/png"):
    """Build an object shaped like a Gemini ``GenerateContentResponse`` with one image."""
    text_part = SimpleNamespace(text="Here is your image.", inline_data=None)
    image_part = SimpleNamespace(text=None, inline_data=SimpleNamespace(data=data, mime_type=mime_type))
    content = SimpleNamespace(role="model", parts=[text_part, image_part])
    return SimpleNamespace(candidates=[SimpleNamespace(content=content)])


def make_text_response(text="I cannot draw that."):
    """Build a response that carries text but no image."""
    part = SimpleNamespace(text=text, inline_data=None)
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))])


class FakeModels:
    """Stand-in for ``client.aio.models``.

    Each call consumes the next outcome; the last outcome repeats.  An outcome
    may be a response object, an exception instance (raised), or an async
    callable (awaited).
    """

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls: list[dict] = []

    async def generate_content(self, *, model, contents, config):
        self.calls.append({"model": model, "contents": contents, "config": config})
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return await outcome()
        return outcome


class FakeGeminiClient:
    """Minimal ``genai.Client`` replacement exposing ``aio.models``."""

    def __init__(self, *outcomes):
        self.models = FakeModels(outcomes or [make_image_response()])
        self.aio = SimpleNamespace(models=self.models)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> NabdConfig:
    """Create a test configuration backed by a temporary database.

    Seeding is off and retries do not wait, so tests start from an empty
    gallery and run fast.
    """
    return NabdConfig(
        data_dir=temp_dir / "data",
        seed_defaults=False,
        gemini_api_key=None,
        generation_retry_delay=0.0,
        generation_timeout=5.0,
        _env_file=None,
    )


@pytest.fixture
def database(test_config: NabdConfig) -> Database:
    return Database(test_config.database_path)


@pytest.fixture
def store(database: Database) -> PromptStore:
    return PromptStore(database)


@pytest.fixture
def ledger(database: Database) -> LikeLedger:
    return LikeLedger(database)


@pytest.fixture
def fake_client() -> FakeGeminiClient:
    """A Gemini client that always returns one PNG image."""
    return FakeGeminiClient(make_image_response())


@pytest.fixture
def fake_gateway(fake_client: FakeGeminiClient) -> GenerationGateway:
    return GenerationGateway(client=fake_client, retry_delay=0.0, timeout=5.0)


@pytest.fixture
def test_client(test_config: NabdConfig, fake_gateway: GenerationGateway) -> Generator[TestClient, None, None]:
    """FastAPI TestClient over a fresh app with a fake Gemini client.

    The context manager runs the lifespan, so the rate-limit sweeper is live.
    """
    app = create_app(test_config, gateway=fake_gateway)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def valid_prompt_payload() -> dict:
    """A prompt submission that passes validation."""
    return {
        "title": "Test Scene",
        "promptText": "a quiet lake at dawn, soft light",
        "description": "calm lake view",
        "category": "nature",
    }


@pytest.fixture
def sample_prompts(store: PromptStore) -> list:
    """Insert five prompts with distinct usage counts and creation times.

    Returns:
        The created prompts, oldest first.
    """
    specs = [
        ("Misty Forest", "A misty pine forest at sunrise, volumetric light", "foggy woods", "nature", 5),
        ("Neon Alley", "Rain-soaked neon alley in a cyberpunk city", "night city street", "architecture", 40),
        ("Golden Dragon", "A golden dragon coiled around a mountain peak", "epic fantasy beast", "fantasy", 12),
        ("Desert Dunes", "Endless desert dunes under a violet sky", "quiet sand landscape", "nature", 25),
        ("Paper Portrait", "Portrait of an old sailor made of folded paper", "origami face study", "portrait", 1),
    ]
    created = []
    for index, (title, text, description, category, usage) in enumerate(specs):
        created.append(
            store.create_prompt(
                title,
                text,
                description,
                category,
                usage_count=usage,
                created_at=f"2025-01-0{index + 1}T12:00:00.000000+00:00",
            )
        )
    return created


@pytest.fixture
def make_client():
    """Factory for :class:`FakeGeminiClient` with scripted outcomes."""
    return FakeGeminiClient


@pytest.fixture
def image_response():
    """Factory for image-bearing Gemini responses."""
    return make_image_response


@pytest.fixture
def text_response():
    """Factory for Gemini responses without image data."""
    return make_text_response
