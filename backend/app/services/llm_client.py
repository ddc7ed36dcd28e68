"""
LLM Client Abstraction
Single entry point for the AI parsing layer.
Primary: LLM_PRIMARY_MODEL (default Groq LLaMA 3.1 70B)
Fallback: LLM_FALLBACK_MODEL (default Google Gemini 1.5 Flash)
"""
import logging
import os
from typing import Optional

import litellm

from app.services import parser_config as cfg

logger = logging.getLogger("cutlist-parser.llm")

# Suppress litellm verbose logging
litellm.set_verbose = False


def provider_key_env(model: str) -> Optional[str]:
    """API key env var for a litellm model string ("groq/..." → GROQ_API_KEY)."""
    family = model.split("/", 1)[0].lower() if "/" in model else model.lower()
    for prefix, env_var in cfg.LLM_KEY_ENV_VARS.items():
        if family.startswith(prefix):
            return env_var
    return None


def is_model_configured(model: str) -> bool:
    env_var = provider_key_env(model)
    return bool(env_var and os.getenv(env_var))


async def complete(
    messages: list,
    temperature: float = 0.1,
    json_mode: bool = False,
    max_tokens: int = 4096,
    primary_model: Optional[str] = None,
    fallback_model: Optional[str] = None,
) -> str:
    """
    Call the primary model. Falls back to the secondary on rate limit or error.
    Returns the response content string.
    """
    primary = primary_model or cfg.LLM_PRIMARY_MODEL
    fallback = fallback_model or cfg.LLM_FALLBACK_MODEL

    kwargs = {
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}

    try:
        response = await litellm.acompletion(model=primary, **kwargs)
        return response.choices[0].message.content
    except litellm.RateLimitError:
        logger.warning(f"{primary} rate limit hit - falling back to {fallback}")
    except litellm.AuthenticationError:
        logger.warning(f"{primary} auth error - falling back to {fallback}")
    except Exception as e:
        logger.warning(f"{primary} error ({type(e).__name__}: {e}) - falling back to {fallback}")

    try:
        # Not every provider accepts response_format; ask for JSON in the prompt instead
        fallback_kwargs = {k: v for k, v in kwargs.items() if k != "response_format"}
        if json_mode:
            messages_copy = [dict(m) for m in fallback_kwargs["messages"]]
            if messages_copy and messages_copy[0]["role"] == "system":
                messages_copy[0]["content"] += "\n\nIMPORTANT: Respond with valid JSON only."
            else:
                messages_copy = [{"role": "system", "content": "You must respond with valid JSON only."}] + messages_copy
            fallback_kwargs["messages"] = messages_copy
        response = await litellm.acompletion(model=fallback, **fallback_kwargs)
        return response.choices[0].message.content
    except Exception as e:
        logger.error(f"Both LLMs failed. {fallback} error: {e}")
        raise RuntimeError(f"All LLM providers failed. Last error: {e}")


class LLMClient:
    """Class-based wrapper around complete(), bound to a model pair."""

    def __init__(self, primary_model: Optional[str] = None, fallback_model: Optional[str] = None):
        self.primary_model = primary_model or cfg.LLM_PRIMARY_MODEL
        self.fallback_model = fallback_model or cfg.LLM_FALLBACK_MODEL

    def is_configured(self) -> bool:
        """True when either model has its API key in the environment."""
        return is_model_configured(self.primary_model) or is_model_configured(self.fallback_model)

    async def chat(
        self,
        messages: list,
        temperature: float = 0.1,
        json_mode: bool = False,
        max_tokens: int = 4096,
    ) -> str:
        return await complete(
            messages,
            temperature=temperature,
            json_mode=json_mode,
            max_tokens=max_tokens,
            primary_model=self.primary_model,
            fallback_model=self.fallback_model,
        )
