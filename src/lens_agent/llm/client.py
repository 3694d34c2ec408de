"""LangChain-backed model invoker.

The only module that talks to a chat model.  Each stage prompt is sent as a
system + human message pair and the reply is parsed as JSON.
"""

import json
import logging
from typing import Any

import httpx
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from pydantic import SecretStr

from lens_agent.agents.stage import StagePrompt
from lens_agent.config import LensAgentConfig, get_config
from lens_agent.errors import TransientFailure, ValidationFailure
from lens_agent.models import Role

logger = logging.getLogger(__name__)

# Substrings of provider error names/messages that indicate a retryable problem.
_TRANSIENT_MARKERS = (
    "timeout",
    "timed out",
    "rate limit",
    "ratelimit",
    "overloaded",
    "connection",
    "temporarily unavailable",
    "503",
    "529",
)


def create_llm(
    provider: str,
    model: str,
    api_key: str,
    timeout: int,
    base_url: str = "",
    temperature: float | None = None,
) -> Any:
    """Factory: construct the appropriate LangChain chat model.

    Args:
        provider: One of "openai", "anthropic", "local"
        model: Model name string (provider-specific)
        api_key: API key; empty string allowed for local provider
        timeout: Request timeout in seconds
        base_url: Only used for "local" provider
        temperature: Sampling temperature (defaults to config.llm_temperature)

    Returns:
        A LangChain chat model with .ainvoke() method

    Raises:
        ImportError: If provider == "anthropic" and langchain-anthropic is not installed
        ValueError: If provider == "local" and base_url is empty, or unknown provider
    """
    if temperature is None:
        temperature = get_config().llm_temperature
    if provider == "openai":
        return ChatOpenAI(
            model=model,
            api_key=SecretStr(api_key) if api_key else None,
            temperature=temperature,
            timeout=timeout,
        )
    elif provider == "anthropic":
        try:
            from langchain_anthropic import ChatAnthropic  # deferred: optional dependency
        except ImportError as e:
            raise ImportError(
                "langchain-anthropic is required for the 'anthropic' provider. "
                "Install it with: pip install lens-agent[anthropic]"
            ) from e
        return ChatAnthropic(  # type: ignore[return-value]
            model=model,
            api_key=SecretStr(api_key) if api_key else None,  # type: ignore[arg-type]
            temperature=temperature,
            timeout=timeout,
        )
    elif provider == "local":
        if not base_url:
            raise ValueError(
                "llm_base_url must be set when llm_provider is 'local'. "
                "Set LLM_BASE_URL env var to the OpenAI-compatible endpoint, "
                "e.g. http://localhost:11434/v1"
            )
        return ChatOpenAI(
            model=model,
            api_key=SecretStr(api_key) if api_key else SecretStr("local"),
            base_url=base_url,
            temperature=temperature,
            timeout=timeout,
        )
    else:
        raise ValueError(f"Unsupported llm_provider: '{provider}'")


def response_text(content: Any) -> str:
    """Flatten message content (str or list of parts) to text."""
    if isinstance(content, str):
        return content.strip()
    parts = []
    for item in content:
        if isinstance(item, dict):
            parts.append(str(item.get("text", "")))
        else:
            parts.append(str(item))
    return "".join(parts).strip()


def parse_json_response(text: str) -> dict[str, Any]:
    """Parse a JSON object, tolerating a surrounding markdown code fence."""
    cleaned = text.strip()
    # Remove markdown code blocks if present
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    if cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    cleaned = cleaned.strip()

    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ValidationFailure(f"model response is not valid JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise ValidationFailure(f"model response is a JSON {type(parsed).__name__}, not an object")
    return parsed


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (TimeoutError, ConnectionError, httpx.TransportError)):
        return True
    text = f"{type(exc).__name__} {exc}".lower()
    return any(marker in text for marker in _TRANSIENT_MARKERS)


class LangChainInvoker:
    """ModelInvoker backed by a LangChain chat model.

    The chat model is created lazily, once per invoker, and reused across
    roles and concurrent pipeline runs.
    """

    def __init__(self, llm: Any = None, settings: LensAgentConfig | None = None) -> None:
        self._llm = llm
        self._settings = settings

    @classmethod
    def from_config(cls, settings: LensAgentConfig | None = None) -> "LangChainInvoker":
        return cls(settings=settings or get_config())

    @property
    def llm(self) -> Any:
        if self._llm is None:
            cfg = self._settings or get_config()
            self._llm = create_llm(
                provider=cfg.llm_provider,
                model=cfg.llm_model,
                api_key=cfg.llm_api_key,
                timeout=cfg.llm_timeout,
                base_url=cfg.llm_base_url,
                temperature=cfg.llm_temperature,
            )
        return self._llm

    async def __call__(self, role: Role, prompt: StagePrompt) -> dict[str, Any]:
        messages = [
            SystemMessage(content=prompt.system),
            HumanMessage(content=prompt.user),
        ]
        try:
            response = await self.llm.ainvoke(messages)
        except Exception as e:
            if is_transient(e):
                raise TransientFailure(f"{role} model call failed: {e}") from e
            raise

        text = response_text(response.content)
        logger.debug(f"[{role}] model returned {len(text)} chars")
        return parse_json_response(text)
