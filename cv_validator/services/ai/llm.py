"""Chat model factory for the Gemini backed extraction and validation stages."""

import logging
from typing import Optional

from langchain_google_genai import ChatGoogleGenerativeAI

from cv_validator.core.config import Settings, settings as default_settings
from cv_validator.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


def get_gemini_chat_model(settings: Settings = default_settings, temperature: float = 0.1) -> ChatGoogleGenerativeAI:
    """Initialize and return the Gemini chat model.

    Args:
        settings: Application settings holding the API key and model name.
        temperature: Sampling temperature. Kept low, both uses want
            faithful, repeatable output.

    Returns:
        ChatGoogleGenerativeAI: Configured Gemini chat model instance.

    Raises:
        ConfigurationError: If the Google API key is not set.
    """
    google_api_key = settings.GOOGLE_API_KEY
    if not google_api_key:
        raise ConfigurationError("GOOGLE_API_KEY is not set in environment variables or .env")

    return ChatGoogleGenerativeAI(
        model=settings.GEMINI_MODEL,
        temperature=temperature,
        google_api_key=google_api_key,
        timeout=settings.AI_REQUEST_TIMEOUT_SECONDS,
        # Retries are counted by the callers, not by the client
        max_retries=0,
    )


def get_optional_chat_model(settings: Settings = default_settings) -> Optional[ChatGoogleGenerativeAI]:
    """Like get_gemini_chat_model, but returns None when no API key is configured."""
    try:
        return get_gemini_chat_model(settings)
    except ConfigurationError as e:
        logger.warning(f"Gemini model unavailable: {e}")
        return None
