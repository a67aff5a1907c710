"""
Rewrite backend abstractions.

Provides a unified interface over the AI services (OpenAI, Claude, Perplexity,
DeepSeek, or a plain HTTP rewrite endpoint) that rewrite one piece of text.
Backends never raise for vendor failures: every call returns a tagged
BackendOutcome saying whether the failure is worth retrying, means the
payload was too large, or is permanent.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any, List, Sequence, Tuple
import asyncio
import logging
import os
import time

import anthropic
import httpx
import openai

from .errors import BackendConfigurationError

logger = logging.getLogger(__name__)

MAX_OUTPUT_TOKENS = 4000

# HTTP statuses that mean "try again later"
TRANSIENT_STATUS_CODES = {408, 409, 425, 429, 500, 502, 503, 504, 529}
OVERSIZE_STATUS_CODE = 413


class OutcomeStatus(str, Enum):
    """Tag on every backend call result."""
    OK = "ok"
    RETRYABLE = "retryable"
    OVERSIZED = "oversized"
    FATAL = "fatal"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class TransformRequest:
    """One rewrite call. Immutable for the lifetime of the call."""
    segment_content: str
    instructions: str
    backend_selector: str
    auxiliary_context: Dict[str, Any] = field(default_factory=dict)

    @property
    def style_references(self) -> List[str]:
        return list(self.auxiliary_context.get("style_references") or [])

    @property
    def content_references(self) -> List[str]:
        return list(self.auxiliary_context.get("content_references") or [])


@dataclass
class BackendOutcome:
    """Result of a single backend call."""
    status: OutcomeStatus
    text: str = ""
    reason: Optional[str] = None
    status_code: Optional[int] = None
    processing_time: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == OutcomeStatus.OK

    @classmethod
    def success(cls, text: str, **kwargs) -> "BackendOutcome":
        return cls(status=OutcomeStatus.OK, text=text, **kwargs)

    @classmethod
    def retryable(cls, reason: str, **kwargs) -> "BackendOutcome":
        return cls(status=OutcomeStatus.RETRYABLE, reason=reason, **kwargs)

    @classmethod
    def oversized(cls, reason: str = "Payload too large", **kwargs) -> "BackendOutcome":
        return cls(status=OutcomeStatus.OVERSIZED, reason=reason, status_code=OVERSIZE_STATUS_CODE, **kwargs)

    @classmethod
    def fatal(cls, reason: str, **kwargs) -> "BackendOutcome":
        return cls(status=OutcomeStatus.FATAL, reason=reason, **kwargs)


def classify_status_code(status_code: int) -> OutcomeStatus:
    """Map an HTTP status code onto an outcome tag."""
    if status_code == OVERSIZE_STATUS_CODE:
        return OutcomeStatus.OVERSIZED
    if status_code in TRANSIENT_STATUS_CODES or status_code >= 500:
        return OutcomeStatus.RETRYABLE
    if 200 <= status_code < 300:
        return OutcomeStatus.OK
    return OutcomeStatus.FATAL


class RewriteBackend(ABC):
    """Abstract base class for rewrite backends."""

    def __init__(self, name: str):
        self.name = name
        self.usage_stats = {
            'requests': 0,
            'successful': 0,
            'failed': 0,
            'total_tokens': 0
        }

    @abstractmethod
    async def rewrite(self, request: TransformRequest) -> BackendOutcome:
        """Rewrite `request.segment_content` following `request.instructions`."""
        pass

    @abstractmethod
    def get_provider_name(self) -> str:
        """Get the display name of this backend."""
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this backend can be called (API keys, endpoint, etc.)."""
        pass

    async def aclose(self) -> None:
        """Release network clients. Safe to call more than once."""
        return None

    def update_usage_stats(self, success: bool, tokens: int = 0):
        """Update usage statistics."""
        self.usage_stats['requests'] += 1
        if success:
            self.usage_stats['successful'] += 1
        else:
            self.usage_stats['failed'] += 1
        self.usage_stats['total_tokens'] += tokens

    def get_usage_stats(self) -> Dict[str, Any]:
        """Get current usage statistics."""
        return self.usage_stats.copy()

    def get_system_prompt(self) -> str:
        """Get the system prompt shared by the chat-model backends."""
        return (
            "You are an expert text transformation assistant that rewrites text "
            "according to specific instructions. Preserve the meaning of the source, "
            "do not add commentary, and return only the rewritten text."
        )

    def build_user_prompt(self, request: TransformRequest) -> str:
        """Render instructions, reference material and the text into one prompt."""
        sections = [f"Instructions: {request.instructions}"]
        if request.style_references:
            sections.append(
                "Match the style of these reference works: "
                f"{', '.join(request.style_references)}."
            )
        if request.content_references:
            sections.append(
                "Draw on the content of these reference works where relevant: "
                f"{', '.join(request.content_references)}."
            )
        sections.append(f"Text to rewrite:\n\n{request.segment_content}")
        return "\n\n".join(sections)


class OpenAIBackend(RewriteBackend):
    """OpenAI chat-completions backend. Also serves OpenAI-compatible APIs."""

    MODEL_ALIASES = {
        "gpt-4o": "gpt-4o",
        "gpt-4": "gpt-4",
        "gpt-3.5": "gpt-3.5-turbo",
        "openai": "gpt-4o",
    }
    API_KEY_ENV = "OPENAI_API_KEY"
    BASE_URL: Optional[str] = None

    def __init__(
        self,
        model: str = "gpt-4o",
        api_key: Optional[str] = None,
        timeout: float = 60.0,
        name: str = "openai",
    ):
        super().__init__(name)
        self.model = self.MODEL_ALIASES.get(model.lower(), model)
        self.api_key = api_key or os.getenv(self.API_KEY_ENV)
        self.timeout = timeout
        self._client: Optional[openai.AsyncOpenAI] = None

    def get_provider_name(self) -> str:
        return "OpenAI"

    def is_available(self) -> bool:
        return bool(self.api_key)

    def missing_key_message(self) -> str:
        return f"OpenAI API key is required for GPT models. Set {self.API_KEY_ENV}."

    def _get_client(self) -> openai.AsyncOpenAI:
        if not self._client:
            # Retries are owned by the invoker, not the SDK
            self._client = openai.AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.BASE_URL,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    async def rewrite(self, request: TransformRequest) -> BackendOutcome:
        """Rewrite text with a chat-completions call."""
        start_time = time.time()

        if not self.is_available():
            self.update_usage_stats(success=False)
            return BackendOutcome.fatal(self.missing_key_message())

        try:
            response = await self._get_client().chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": self.get_system_prompt()},
                    {"role": "user", "content": self.build_user_prompt(request)}
                ],
                max_tokens=MAX_OUTPUT_TOKENS,
                temperature=0.7
            )
        except openai.APIStatusError as e:
            self.update_usage_stats(success=False)
            return self._outcome_for_status_error(e, time.time() - start_time)
        except openai.APIConnectionError as e:
            # Covers APITimeoutError
            self.update_usage_stats(success=False)
            return BackendOutcome.retryable(
                f"{self.get_provider_name()} connection error: {e}",
                processing_time=time.time() - start_time,
            )

        text = (response.choices[0].message.content or "").strip()
        tokens = response.usage.total_tokens if response.usage else 0
        self.update_usage_stats(success=True, tokens=tokens)
        return BackendOutcome.success(
            text,
            processing_time=time.time() - start_time,
            metadata={"model": self.model, "tokens_used": tokens},
        )

    def _outcome_for_status_error(self, error: "openai.APIStatusError", elapsed: float) -> BackendOutcome:
        reason = f"{self.get_provider_name()} API error ({error.status_code}): {error.message}"
        # The token limit shows up as a 400 with this code
        if getattr(error, "code", None) == "context_length_exceeded":
            return BackendOutcome.oversized(reason, processing_time=elapsed)

        status = classify_status_code(error.status_code)
        if status == OutcomeStatus.FATAL and error.status_code in (401, 403):
            reason = f"{self.missing_key_message()} ({reason})"
        return BackendOutcome(
            status=status,
            reason=reason,
            status_code=error.status_code,
            processing_time=elapsed,
        )

    async def aclose(self) -> None:
        if self._client:
            await self._client.close()
            self._client = None


class PerplexityBackend(OpenAIBackend):
    """Perplexity's OpenAI-compatible chat API."""

    MODEL_ALIASES = {
        "perplexity": "llama-3.1-sonar-small-128k-online",
        "llama": "llama-3.1-sonar-small-128k-online",
    }
    API_KEY_ENV = "PERPLEXITY_API_KEY"
    BASE_URL = "https://api.perplexity.ai"

    def __init__(self, model: str = "perplexity", api_key: Optional[str] = None, timeout: float = 60.0):
        super().__init__(model=model, api_key=api_key, timeout=timeout, name="perplexity")

    def get_provider_name(self) -> str:
        return "Perplexity"

    def missing_key_message(self) -> str:
        return f"Perplexity API key is required for Llama models. Set {self.API_KEY_ENV}."


class DeepSeekBackend(OpenAIBackend):
    """DeepSeek's OpenAI-compatible chat API."""

    MODEL_ALIASES = {"deepseek": "deepseek-chat"}
    API_KEY_ENV = "DEEPSEEK_API_KEY"
    BASE_URL = "https://api.deepseek.com"

    def __init__(self, model: str = "deepseek", api_key: Optional[str] = None, timeout: float = 60.0):
        super().__init__(model=model, api_key=api_key, timeout=timeout, name="deepseek")

    def get_provider_name(self) -> str:
        return "DeepSeek"

    def missing_key_message(self) -> str:
        return f"DeepSeek API key is required for DeepSeek models. Set {self.API_KEY_ENV}."


class ClaudeBackend(RewriteBackend):
    """Anthropic Claude backend."""

    DEFAULT_MODEL = "claude-sonnet-4-20250514"

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        api_key: Optional[str] = None,
        timeout: float = 60.0
    ):
        super().__init__("claude")
        self.model = self.DEFAULT_MODEL if model.lower() in ("claude", "anthropic") else model
        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        self.timeout = timeout
        self._client: Optional[anthropic.AsyncAnthropic] = None

    def get_provider_name(self) -> str:
        return "Claude"

    def is_available(self) -> bool:
        return bool(self.api_key)

    def missing_key_message(self) -> str:
        return "Anthropic API key is required for Claude models. Set ANTHROPIC_API_KEY."

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if not self._client:
            self._client = anthropic.AsyncAnthropic(
                api_key=self.api_key,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    async def rewrite(self, request: TransformRequest) -> BackendOutcome:
        """Rewrite text with the Messages API."""
        start_time = time.time()

        if not self.is_available():
            self.update_usage_stats(success=False)
            return BackendOutcome.fatal(self.missing_key_message())

        try:
            response = await self._get_client().messages.create(
                model=self.model,
                max_tokens=MAX_OUTPUT_TOKENS,
                system=self.get_system_prompt(),
                messages=[
                    {"role": "user", "content": self.build_user_prompt(request)}
                ],
                temperature=0.7,
            )
        except anthropic.APIStatusError as e:
            self.update_usage_stats(success=False)
            reason = f"Claude API error ({e.status_code}): {e.message}"
            status = classify_status_code(e.status_code)
            if status == OutcomeStatus.FATAL and e.status_code in (401, 403):
                reason = f"{self.missing_key_message()} ({reason})"
            return BackendOutcome(
                status=status,
                reason=reason,
                status_code=e.status_code,
                processing_time=time.time() - start_time,
            )
        except anthropic.APIConnectionError as e:
            self.update_usage_stats(success=False)
            return BackendOutcome.retryable(
                f"Claude connection error: {e}",
                processing_time=time.time() - start_time,
            )

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        ).strip()
        tokens = response.usage.input_tokens + response.usage.output_tokens if response.usage else 0
        self.update_usage_stats(success=True, tokens=tokens)
        return BackendOutcome.success(
            text,
            processing_time=time.time() - start_time,
            metadata={"model": self.model, "tokens_used": tokens},
        )

    async def aclose(self) -> None:
        if self._client:
            await self._client.close()
            self._client = None


class HttpRewriteBackend(RewriteBackend):
    """
    Backend for a JSON rewrite endpoint.

    Posts `{text, instructions, model, ...}` and expects `{text}` back.
    A 413 response means the payload was too large.
    """

    def __init__(
        self,
        url: str,
        model: Optional[str] = None,
        timeout: float = 60.0,
        headers: Optional[Dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__("http")
        self.url = url
        self.model = model
        self.timeout = timeout
        self.headers = headers or {}
        self._client = client
        self._owns_client = client is None

    def get_provider_name(self) -> str:
        return "HTTP"

    def is_available(self) -> bool:
        return self.url.startswith(("http://", "https://"))

    def _get_client(self) -> httpx.AsyncClient:
        if not self._client:
            self._client = httpx.AsyncClient(timeout=self.timeout, headers=self.headers)
        return self._client

    async def rewrite(self, request: TransformRequest) -> BackendOutcome:
        start_time = time.time()

        if not self.is_available():
            self.update_usage_stats(success=False)
            return BackendOutcome.fatal(f"Invalid rewrite endpoint URL: {self.url}")

        payload = {
            "text": request.segment_content,
            "instructions": request.instructions,
            "model": self.model or request.backend_selector,
            "preset": request.auxiliary_context.get("preset"),
            "useStyleReference": bool(request.style_references),
            "styleReferences": [{"name": name, "active": True} for name in request.style_references],
            "useContentReference": bool(request.content_references),
            "contentReferences": [{"name": name, "active": True} for name in request.content_references],
        }

        try:
            response = await self._get_client().post(self.url, json=payload)
        except httpx.HTTPError as e:
            self.update_usage_stats(success=False)
            return BackendOutcome.retryable(
                f"Rewrite endpoint HTTP error: {e}",
                processing_time=time.time() - start_time,
            )

        elapsed = time.time() - start_time
        status = classify_status_code(response.status_code)
        if status != OutcomeStatus.OK:
            self.update_usage_stats(success=False)
            return BackendOutcome(
                status=status,
                reason=_error_reason(response),
                status_code=response.status_code,
                processing_time=elapsed,
            )

        try:
            data = response.json()
        except ValueError:
            self.update_usage_stats(success=False)
            return BackendOutcome.retryable(
                "Rewrite endpoint returned invalid JSON",
                status_code=response.status_code,
                processing_time=elapsed,
            )

        text = data.get("text") if isinstance(data, dict) else None
        if not isinstance(text, str):
            self.update_usage_stats(success=False)
            return BackendOutcome.fatal(
                "Rewrite endpoint response has no 'text' field",
                status_code=response.status_code,
                processing_time=elapsed,
            )

        self.update_usage_stats(success=True)
        return BackendOutcome.success(
            text,
            status_code=response.status_code,
            processing_time=elapsed,
            metadata={"model": data.get("model")},
        )

    async def aclose(self) -> None:
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None


def _error_reason(response: httpx.Response) -> str:
    try:
        data = response.json()
        detail = data.get("error") if isinstance(data, dict) else None
    except ValueError:
        detail = None
    detail = detail or response.reason_phrase or response.text[:200]
    return f"Rewrite endpoint returned {response.status_code}: {detail}"


class MockBackend(RewriteBackend):
    """
    Mock backend for tests and dry runs.

    With no script it echoes the segment back. `outcomes` is consumed one
    call at a time; once exhausted, calls fall back to echoing. Requests
    longer than `oversize_above` characters are rejected as oversized.
    """

    def __init__(
        self,
        outcomes: Optional[Sequence[BackendOutcome]] = None,
        delay: float = 0.0,
        oversize_above: Optional[int] = None,
        transform=None,
    ):
        super().__init__("mock")
        self._outcomes: List[BackendOutcome] = list(outcomes or [])
        self.delay = delay
        self.oversize_above = oversize_above
        self.transform = transform or (lambda text: text.strip())
        self.requests: List[TransformRequest] = []

    def get_provider_name(self) -> str:
        return "Mock"

    def is_available(self) -> bool:
        return True

    async def rewrite(self, request: TransformRequest) -> BackendOutcome:
        self.requests.append(request)

        if self.delay > 0:
            await asyncio.sleep(self.delay)

        if self.oversize_above is not None and len(request.segment_content) > self.oversize_above:
            self.update_usage_stats(success=False)
            return BackendOutcome.oversized(
                f"Mock payload of {len(request.segment_content)} chars exceeds {self.oversize_above}"
            )

        if self._outcomes:
            outcome = self._outcomes.pop(0)
            self.update_usage_stats(success=outcome.ok)
            return outcome

        self.update_usage_stats(success=True)
        return BackendOutcome.success(self.transform(request.segment_content))


# (prefixes, factory) pairs checked in order
_SELECTOR_PREFIXES: List[Tuple[Tuple[str, ...], type]] = [
    (("gpt", "openai", "o1", "o3"), OpenAIBackend),
    (("claude", "anthropic"), ClaudeBackend),
    (("perplexity", "sonar", "llama"), PerplexityBackend),
    (("deepseek",), DeepSeekBackend),
]


def get_supported_selectors() -> List[str]:
    """Selector prefixes understood by create_backend (besides URLs and 'mock')."""
    return [prefix for prefixes, _ in _SELECTOR_PREFIXES for prefix in prefixes]


def create_backend(selector: str, timeout: float = 60.0) -> RewriteBackend:
    """
    Create the backend a selector points at.

    Args:
        selector: Model name ("gpt-4o", "claude", "deepseek-chat"...),
            an http(s) URL of a rewrite endpoint, or "mock".
        timeout: Per-request timeout in seconds

    Returns:
        A RewriteBackend instance.

    Raises:
        BackendConfigurationError: if the selector matches no backend.
    """
    normalized = selector.strip()
    lowered = normalized.lower()

    if lowered.startswith(("http://", "https://")):
        return HttpRewriteBackend(normalized, timeout=timeout)
    if lowered == "mock":
        return MockBackend()

    for prefixes, backend_cls in _SELECTOR_PREFIXES:
        if lowered.startswith(prefixes):
            return backend_cls(model=normalized, timeout=timeout)

    raise BackendConfigurationError(
        f"Unsupported AI provider: {selector}. "
        f"Use a model name starting with one of {', '.join(get_supported_selectors())}, "
        "an http(s) rewrite endpoint URL, or 'mock'.",
        backend=selector,
    )
