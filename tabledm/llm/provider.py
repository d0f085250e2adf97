"""Provider interface for the narration oracle's language model."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, TypeVar

from pydantic import BaseModel

from ..config import Config

logger = logging.getLogger(__name__)

T = TypeVar("T")
SchemaT = TypeVar("SchemaT", bound=BaseModel)

Messages = list[dict[str, str]]

# SDK exception class names, HTTP statuses and error-body types that mean
# "the vendor is busy, try again shortly"
TRANSIENT_ERROR_NAMES = frozenset({"OverloadedError", "RateLimitError", "APITimeoutError"})
TRANSIENT_STATUS_CODES = frozenset({408, 429, 529})
TRANSIENT_ERROR_TYPES = frozenset({"overloaded_error", "rate_limit_error"})


def is_transient(exc: BaseException) -> bool:
    """True for overload, rate-limit and timeout errors worth retrying."""
    if type(exc).__name__ in TRANSIENT_ERROR_NAMES:
        return True
    if getattr(exc, "status_code", None) in TRANSIENT_STATUS_CODES:
        return True
    body = getattr(exc, "body", None)
    if isinstance(body, dict):
        return body.get("error", {}).get("type") in TRANSIENT_ERROR_TYPES
    return False


class LLMProvider(ABC):
    """A language-model vendor that answers in a Pydantic schema.

    Subclasses set ``name`` and ``default_model`` and build their SDK client
    in ``_create_client``. The client is created on first use, so building a
    provider never touches the network.
    """

    name: str = "unknown"
    default_model: str = ""

    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        max_retries: int | None = None,
        retry_delay: float = 2.0,
    ):
        self.api_key = api_key
        self.model = model or self.default_model
        self.max_retries = Config.LLM_MAX_RETRIES if max_retries is None else max_retries
        self.retry_delay = retry_delay
        self._client: Any = None

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = self._create_client()
        return self._client

    @abstractmethod
    def _create_client(self) -> Any:
        """Build the vendor SDK client."""

    @abstractmethod
    async def complete_with_schema(
        self,
        messages: Messages,
        schema: type[SchemaT],
        system: str | None = None,
        model: str | None = None,
        max_tokens: int = 1024,
    ) -> SchemaT:
        """Ask the model and parse its answer into ``schema``.

        Raises:
            ValueError: the answer does not fit the schema
        """

    async def _call(self, request: Callable[[], T]) -> T:
        """Run a blocking SDK request in the default executor.

        Transient errors are retried up to ``max_retries`` times, waiting
        ``retry_delay`` seconds and doubling the wait each attempt. Anything
        else propagates immediately.
        """
        loop = asyncio.get_running_loop()
        attempt = 0
        while True:
            try:
                return await loop.run_in_executor(None, request)
            except Exception as exc:
                if attempt >= self.max_retries or not is_transient(exc):
                    raise
                delay = self.retry_delay * 2 ** attempt
                attempt += 1
                logger.warning(
                    f"{self.name} request failed with {type(exc).__name__}; "
                    f"retry {attempt}/{self.max_retries} in {delay:.1f}s"
                )
                await asyncio.sleep(delay)
