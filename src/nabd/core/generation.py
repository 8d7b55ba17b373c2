"""Image generation through the Gemini API.

This module provides :class:`GenerationGateway`, the single point of contact
with the remote image model, and :func:`generate_prompt_image`, which ties a
generation request to the prompt store.

Key Responsibilities
--------------------
- **Lazy client creation**: the ``google-genai`` client is only built on the
  first request, so the application starts without an API key.
- **Timeout**: each remote call is bounded by ``generation_timeout``.  A call
  that overruns is abandoned rather than cancelled; its eventual result is
  discarded.
- **Bounded retry**: transient failures are retried up to
  ``generation_max_attempts`` times, waiting ``retry_delay * attempt``
  seconds before each retry.  Permanent failures (malformed request,
  authorization) stop immediately.
- **Payload extraction**: the first inline image part of the response is
  returned as a ``data:`` URI.

Usage
-----
::

    from nabd.core.config import config
    from nabd.core.generation import GenerationGateway

    gateway = GenerationGateway.from_config(config)
    image_url = await gateway.generate("a quiet lake at dawn, soft light")
"""

from __future__ import annotations

import asyncio
import base64
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from nabd.core.config import NabdConfig
from nabd.core.errors import GenerationFailedError, PromptNotFoundError
from nabd.core.prompt_store import GeneratedImage, PromptStore

logger = logging.getLogger(__name__)

# HTTP status codes from the Gemini API that retrying cannot fix.
PERMANENT_STATUS_CODES = frozenset({400, 401, 403})

# Message fragments treated as permanent when no status code is available.
PERMANENT_MESSAGE_MARKERS = ("Invalid", "Unauthorized")

DEFAULT_MIME_TYPE = "image/png"


class NoImageDataError(Exception):
    """The model answered but returned no inline image."""

    pass


def is_permanent_error(exc: BaseException) -> bool:
    """Return True if *exc* means retrying the same request is pointless.

    Args:
        exc: The exception raised by a generation attempt.

    Returns:
        True for malformed-request and authorization failures.
    """
    if isinstance(exc, genai_errors.ClientError) and exc.code in PERMANENT_STATUS_CODES:
        return True
    message = str(exc)
    return any(marker in message for marker in PERMANENT_MESSAGE_MARKERS)


def extract_image_url(response: Any) -> str:
    """Pull the first inline image out of a ``generate_content`` response.

    Args:
        response: A ``GenerateContentResponse`` (or an object shaped like one).

    Returns:
        The image encoded as ``data:<mime>;base64,<payload>``.

    Raises:
        NoImageDataError: If no candidate part carries inline image data.
    """
    candidates = getattr(response, "candidates", None) or []
    if candidates:
        content = getattr(candidates[0], "content", None)
        for part in getattr(content, "parts", None) or []:
            inline = getattr(part, "inline_data", None)
            if inline is None or not inline.data:
                continue
            data = inline.data
            # The SDK decodes to bytes; a raw REST payload is already base64 text.
            if isinstance(data, bytes):
                data = base64.b64encode(data).decode("ascii")
            mime_type = inline.mime_type or DEFAULT_MIME_TYPE
            return f"data:{mime_type};base64,{data}"

    raise NoImageDataError("No image data in response")


def _discard_result(task: asyncio.Task) -> None:
    # Retrieve the outcome of an abandoned call so asyncio does not warn about it
    if not task.cancelled():
        task.exception()


class GenerationGateway:
    """Call the remote image model with timeout and bounded retry.

    Attributes:
        model: Gemini model name.
        timeout: Seconds allowed for a single remote call.
        max_attempts: Total attempts per :meth:`generate` call.
        retry_delay: Base delay; the wait before retry *n* is ``retry_delay * n``.
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        model: str = "gemini-2.5-flash-image",
        base_url: str | None = None,
        timeout: float = 60.0,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
        client: Any = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialise the gateway.

        No connection is made here.

        Args:
            api_key: Gemini API key.  Without one (and without *client*)
                every request fails.
            model: Gemini model name.
            base_url: Optional API base URL (for proxies).
            timeout: Per-call timeout ceiling in seconds.
            max_attempts: Maximum attempts, including the first.
            retry_delay: Base backoff in seconds.
            client: Pre-built ``genai.Client`` or compatible object.
            sleep: Awaitable sleep function used between retries.
        """
        self.model = model
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay

        self._api_key = api_key
        self._base_url = base_url
        self._client = client
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: NabdConfig, **kwargs) -> GenerationGateway:
        return cls(
            api_key=config.gemini_api_key,
            model=config.gemini_model,
            base_url=config.gemini_base_url,
            timeout=config.generation_timeout,
            max_attempts=config.generation_max_attempts,
            retry_delay=config.generation_retry_delay,
            **kwargs,
        )

    # -- Client -------------------------------------------------------------

    def _get_client(self) -> Any:
        if self._client is None:
            if not self._api_key:
                logger.error("Image generation requested but no Gemini API key is configured")
                raise GenerationFailedError()

            http_options = None
            if self._base_url:
                http_options = types.HttpOptions(base_url=self._base_url)
            self._client = genai.Client(api_key=self._api_key, http_options=http_options)
            logger.info(f"Gemini client created for model {self.model}")
        return self._client

    async def _call_model(self, prompt_text: str) -> Any:
        client = self._get_client()
        return await client.aio.models.generate_content(
            model=self.model,
            contents=[types.Content(role="user", parts=[types.Part(text=prompt_text)])],
            config=types.GenerateContentConfig(response_modalities=["TEXT", "IMAGE"]),
        )

    async def _attempt(self, prompt_text: str) -> str:
        """Run one remote call under the timeout and extract the image."""
        task = asyncio.ensure_future(self._call_model(prompt_text))
        try:
            # shield() keeps the remote call alive when the timeout fires
            response = await asyncio.wait_for(asyncio.shield(task), timeout=self.timeout)
        except asyncio.TimeoutError:
            task.add_done_callback(_discard_result)
            raise TimeoutError(f"Request timeout after {self.timeout:.0f}s") from None
        return extract_image_url(response)

    # -- Public interface ---------------------------------------------------

    async def generate(self, prompt_text: str) -> str:
        """Generate an image for *prompt_text*.

        Args:
            prompt_text: Instruction sent to the model.

        Returns:
            The generated image as a ``data:`` URI.

        Raises:
            GenerationFailedError: When a permanent error occurs or every
                attempt fails.  Attempt-level detail is only logged.
        """
        last_error: BaseException | None = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self._attempt(prompt_text)
            except GenerationFailedError:
                raise
            except Exception as e:
                last_error = e
                logger.warning(f"Generation attempt {attempt}/{self.max_attempts} failed: {e}")

                if is_permanent_error(e):
                    logger.error(f"Permanent generation error, not retrying: {e}")
                    break

                if attempt < self.max_attempts:
                    await self._sleep(self.retry_delay * attempt)

        logger.error(f"All generation attempts failed: {last_error}")
        raise GenerationFailedError()


async def generate_prompt_image(
    store: PromptStore,
    gateway: GenerationGateway,
    prompt_id: str,
) -> GeneratedImage:
    """Generate an image for a stored prompt and record it.

    The prompt's usage counter is incremented before the remote call and is
    not rolled back if generation fails: usage counts requests, not
    successes.

    Args:
        store: Prompt store.
        gateway: Generation gateway.
        prompt_id: Prompt to generate for.

    Returns:
        The stored :class:`GeneratedImage`.

    Raises:
        PromptNotFoundError: If the prompt does not exist (usage untouched).
        GenerationFailedError: If the gateway gives up.
    """
    prompt = store.get_prompt(prompt_id)
    if prompt is None:
        raise PromptNotFoundError(prompt_id)

    store.increment_usage(prompt.id)

    image_url = await gateway.generate(prompt.prompt_text)
    return store.save_generated_image(prompt.id, image_url)
