import logging
from typing import Optional

from dotenv import load_dotenv
from llama_index.llms.ollama import Ollama
from llama_index.llms.openai import OpenAI

from ...setting import EstimatorSettings, get_settings

load_dotenv()

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("gemini", "openai", "anthropic", "ollama")

# Cache for LLM models to avoid re-initialization
_llm_cache: dict = {}


class EstimatorModel:
    """Creates and caches the LlamaIndex LLM used for estimates."""

    @classmethod
    def set(
        cls,
        provider: str = "",
        model_name: str = "",
        setting: Optional[EstimatorSettings] = None,
    ):
        """
        Get or create the LLM for a provider.

        Args:
            provider: gemini, openai, anthropic or ollama (settings default if empty)
            model_name: Model name (provider default if empty)
            setting: EstimatorSettings instance

        Returns:
            LLM model instance
        """
        setting = setting or get_settings()
        provider = (provider or setting.llm.provider or "gemini").lower()
        if provider not in SUPPORTED_PROVIDERS:
            raise ValueError(
                f"Unsupported LLM provider '{provider}'. "
                f"Expected one of: {', '.join(SUPPORTED_PROVIDERS)}"
            )

        model_name = model_name or setting.llm.model
        cache_key = f"{provider}_{model_name or 'default'}"
        if cache_key in _llm_cache:
            logger.debug(f"Using cached LLM model: {cache_key}")
            return _llm_cache[cache_key]

        if provider == "gemini":
            from llama_index.llms.gemini import Gemini
            model_name = model_name or setting.gemini.model
            # Gemini API requires model names to be prefixed with "models/"
            gemini_model_name = f"models/{model_name}" if not model_name.startswith("models/") else model_name
            model = Gemini(
                model=gemini_model_name,
                api_key=setting.gemini.api_key,
                temperature=setting.gemini.temperature,
                max_tokens=setting.gemini.max_output_tokens,
                generation_config={
                    "temperature": setting.llm.temperature,
                    "top_p": setting.llm.top_p,
                    "top_k": setting.llm.top_k,
                    "max_output_tokens": setting.gemini.max_output_tokens,
                },
            )
        elif provider == "openai":
            model = OpenAI(
                model=model_name or setting.openai.model,
                api_key=setting.openai.api_key,
                temperature=setting.openai.temperature,
                timeout=setting.llm.request_timeout,
            )
        elif provider == "anthropic":
            from llama_index.llms.anthropic import Anthropic
            model = Anthropic(
                model=model_name or setting.anthropic.model,
                api_key=setting.anthropic.api_key,
                temperature=setting.anthropic.temperature,
                max_tokens=setting.anthropic.max_tokens,
            )
        else:
            model = Ollama(
                model=model_name or setting.ollama.model,
                base_url=f"http://{setting.ollama.host}:{setting.ollama.port}",
                temperature=setting.ollama.temperature,
                request_timeout=setting.ollama.request_timeout,
                additional_kwargs={
                    "top_k": setting.llm.top_k,
                    "top_p": setting.llm.top_p,
                },
            )

        _llm_cache[cache_key] = model
        logger.debug(f"Created and cached {provider.upper()} model: {cache_key}")
        return model

    @staticmethod
    def clear_cache() -> None:
        """Clear the LLM model cache."""
        _llm_cache.clear()
        logger.info("LLM model cache cleared")
