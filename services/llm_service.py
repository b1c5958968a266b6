"""LLM service for AV BOQ generation.

Provides the LangChain/OpenAI integration used by the BOQ generator and the
product lookup.
"""

import json
from typing import Dict, Any, Optional, List
import structlog
from langchain_openai import ChatOpenAI
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from config.settings import Settings
from config.errors import ErrorCode, ExternalServiceError, MalformedResponseError
from validators.boq_validator import strip_code_fences

logger = structlog.get_logger(__name__)


class LLMService:
    """Service for LLM operations using LangChain.

    Wraps ChatOpenAI with token tracking and error translation. Built
    explicitly from Settings and passed to the services that need it.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        api_key: Optional[str] = None
    ):
        """Initialize LLMService.

        Args:
            settings: Application settings supplying defaults.
            model: Model name (default from settings).
            temperature: Temperature (default from settings).
            api_key: OpenAI API key (default from settings).
        """
        self.model = model or (settings.llm_model if settings else "gpt-4o")
        if temperature is not None:
            self.temperature = temperature
        else:
            self.temperature = settings.llm_temperature if settings else 0.2
        self.api_key = api_key or (settings.openai_api_key if settings else None)

        self._client: Optional[ChatOpenAI] = None
        self._total_tokens_used = 0

    @property
    def client(self) -> ChatOpenAI:
        """Get LangChain ChatOpenAI client (lazy initialization)."""
        if self._client is None:
            self._client = ChatOpenAI(
                model=self.model,
                temperature=self.temperature,
                api_key=self.api_key
            )
        return self._client

    @property
    def total_tokens_used(self) -> int:
        """Get total tokens used across all calls."""
        return self._total_tokens_used

    async def generate(
        self,
        messages: List[BaseMessage],
        max_tokens: Optional[int] = None
    ) -> Dict[str, Any]:
        """Generate a response from the LLM.

        Args:
            messages: List of LangChain messages.
            max_tokens: Optional max tokens for response.

        Returns:
            Dict with content and token usage.

        Raises:
            ExternalServiceError: If the LLM call fails.
        """
        try:
            kwargs = {}
            if max_tokens:
                kwargs["max_tokens"] = max_tokens

            response = await self.client.ainvoke(messages, **kwargs)
        except Exception as e:
            error_msg = str(e)
            lowered = error_msg.lower()

            if "rate_limit" in lowered or "quota" in lowered:
                code, message = ErrorCode.LLM_RATE_LIMIT, "LLM rate limit exceeded"
            elif "context_length" in lowered or "maximum context" in lowered:
                code, message = ErrorCode.LLM_CONTEXT_TOO_LONG, "Input too long for model context"
            else:
                code, message = ErrorCode.LLM_ERROR, f"LLM generation failed: {error_msg}"

            logger.error("llm_call_failed", model=self.model, code=code, error=error_msg)
            raise ExternalServiceError(
                message=message,
                service="llm",
                code=code,
                details={"original_error": error_msg}
            ) from e

        # Track token usage if available
        tokens_used = 0
        metadata = getattr(response, "response_metadata", None)
        if isinstance(metadata, dict):
            usage = metadata.get("token_usage", {}) or {}
            tokens_used = usage.get("total_tokens", 0)
            self._total_tokens_used += tokens_used

        content = response.content if isinstance(response.content, str) else str(response.content)

        logger.info(
            "llm_generated",
            model=self.model,
            tokens_used=tokens_used,
            content_length=len(content)
        )

        return {
            "content": content,
            "tokens_used": tokens_used
        }

    async def generate_with_system_prompt(
        self,
        system_prompt: str,
        user_message: str,
        max_tokens: Optional[int] = None
    ) -> Dict[str, Any]:
        """Generate a response with system prompt.

        Args:
            system_prompt: System prompt for context.
            user_message: User message/query.
            max_tokens: Optional max tokens for response.

        Returns:
            Dict with content and token usage.
        """
        messages = [
            SystemMessage(content=system_prompt),
            HumanMessage(content=user_message)
        ]
        return await self.generate(messages, max_tokens)

    async def generate_json(
        self,
        system_prompt: str,
        user_message: str,
        max_tokens: Optional[int] = None
    ) -> Dict[str, Any]:
        """Generate a JSON response.

        Adds JSON formatting instructions to the system prompt.

        Args:
            system_prompt: System prompt for context.
            user_message: User message/query.
            max_tokens: Optional max tokens for response.

        Returns:
            Dict with parsed JSON content, raw text and token usage.

        Raises:
            MalformedResponseError: If response is not valid JSON.
        """
        json_prompt = f"""{system_prompt}

IMPORTANT: You MUST respond with valid JSON only. No markdown, no explanation, just JSON."""

        result = await self.generate_with_system_prompt(
            json_prompt,
            user_message,
            max_tokens
        )

        try:
            parsed = json.loads(strip_code_fences(result["content"]))
        except json.JSONDecodeError as e:
            raise MalformedResponseError(
                "LLM did not return valid JSON",
                raw_text=result["content"],
                details={"parse_error": str(e)}
            ) from e

        return {
            "content": parsed,
            "raw_content": result["content"],
            "tokens_used": result["tokens_used"]
        }
