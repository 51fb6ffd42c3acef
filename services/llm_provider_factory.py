"""
LLM Provider Factory
Provides a unified interface for the LLM providers used by the content generator (OpenAI, Mistral).
The provider is chosen via the LLM_PROVIDER setting.
"""

import os
import json
import logging
import re
from typing import Dict, List, Optional, Any, Type
from abc import ABC, abstractmethod
from dotenv import load_dotenv
from pydantic import BaseModel

logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()


def strip_markdown_code_fences(content: str) -> str:
    """
    Strip markdown code fences from an LLM response.

    Mistral often wraps JSON in ```json ... ``` fences, OpenAI usually does not.
    """
    content = (content or '').strip()
    match = re.match(r'^```(?:json)?\s*(.*?)\s*```$', content, re.DOTALL)
    if match:
        return match.group(1).strip()
    return content


class LLMProvider(ABC):
    """Abstract base class for LLM providers"""

    @abstractmethod
    def create_chat_completion(
        self,
        messages: List[Dict[str, str]],
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 500,
        response_format: Optional[Dict] = None,
        timeout: float = 30.0,
        **kwargs
    ) -> Dict[str, Any]:
        """
        Create a chat completion using the provider's API.

        Returns a normalized response dictionary with:
        - content: str (the response text)
        - model: str (model used)
        - usage: dict (token usage stats)
        - raw_response: original API response object
        """
        pass

    @abstractmethod
    def _parse_completion(
        self,
        messages: List[Dict[str, str]],
        response_model: Type[BaseModel],
        model: str,
        temperature: float,
        max_tokens: int,
        timeout: float,
        **kwargs
    ) -> Dict[str, Any]:
        """Provider-native structured output call (.parse())"""
        pass

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return provider name ('openai', 'mistral')"""
        pass

    def create_structured_completion(
        self,
        messages: List[Dict[str, str]],
        response_model: Type[BaseModel],
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 500,
        timeout: float = 30.0,
        **kwargs
    ) -> Dict[str, Any]:
        """
        Create a structured completion parsed into a Pydantic model.

        Tries the provider's native structured output first, then falls back to
        JSON mode with manual validation.

        Returns:
            Dict containing:
            - parsed_object: Pydantic model instance
            - raw_content: Original response text
            - model: Model name used
            - usage: Token usage dict

        Raises:
            RuntimeError: If both structured output and the JSON fallback fail
        """
        try:
            logger.debug(f"Attempting structured completion with {self.get_provider_name()} model {model}")
            result = self._parse_completion(
                messages=messages,
                response_model=response_model,
                model=model,
                temperature=temperature,
                max_tokens=max_tokens,
                timeout=timeout,
                **kwargs
            )
            if result.get("parsed_object") is None:
                raise ValueError("Structured output returned no parsed object")
            return result

        except Exception as e:
            logger.warning(f"Structured output failed, falling back to manual JSON parsing: {e}")

        try:
            response = self.create_chat_completion(
                messages=messages,
                model=model,
                temperature=temperature,
                max_tokens=max_tokens,
                response_format={"type": "json_object"},
                timeout=timeout,
                **kwargs
            )
            content = strip_markdown_code_fences(response["content"])
            parsed_object = response_model.model_validate(json.loads(content))

            logger.info(f"Fallback parsing successful: {response['model']}")
            return {
                "parsed_object": parsed_object,
                "raw_content": content,
                "model": response["model"],
                "usage": response["usage"],
            }

        except json.JSONDecodeError as json_err:
            logger.error(f"JSON parsing failed in fallback: {json_err}")
            raise RuntimeError(f"Failed to parse LLM response as JSON: {json_err}")
        except Exception as fallback_err:
            logger.error(f"Fallback completion failed: {fallback_err}")
            raise RuntimeError(f"Structured completion failed and fallback also failed: {fallback_err}")

    @staticmethod
    def _usage(response) -> Dict[str, int]:
        return {
            "prompt_tokens": response.usage.prompt_tokens,
            "completion_tokens": response.usage.completion_tokens,
            "total_tokens": response.usage.total_tokens,
        }


class OpenAIProvider(LLMProvider):
    """OpenAI API provider implementation"""

    def __init__(self, api_key: Optional[str] = None):
        """Initialize OpenAI provider with API key"""
        from openai import OpenAI

        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not self.api_key:
            raise ValueError("OPENAI_API_KEY not found in environment variables")

        self.client = OpenAI(api_key=self.api_key)
        logger.info("Initialized OpenAI provider")

    def create_chat_completion(
        self,
        messages: List[Dict[str, str]],
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 500,
        response_format: Optional[Dict] = None,
        timeout: float = 30.0,
        **kwargs
    ) -> Dict[str, Any]:
        """Create chat completion using OpenAI API"""
        api_params = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "timeout": timeout,
            **kwargs
        }
        if response_format:
            api_params["response_format"] = response_format

        response = self.client.chat.completions.create(**api_params)

        return {
            "content": response.choices[0].message.content,
            "model": response.model,
            "usage": self._usage(response),
            "raw_response": response
        }

    def _parse_completion(self, messages, response_model, model, temperature, max_tokens, timeout, **kwargs):
        response = self.client.beta.chat.completions.parse(
            model=model,
            messages=messages,
            response_format=response_model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
            **kwargs
        )
        logger.info(f"Structured completion successful: {response.model}, tokens={response.usage.total_tokens}")
        return {
            "parsed_object": response.choices[0].message.parsed,
            "raw_content": response.choices[0].message.content,
            "model": response.model,
            "usage": self._usage(response),
        }

    def get_provider_name(self) -> str:
        return "openai"


class MistralProvider(LLMProvider):
    """Mistral AI provider implementation"""

    # Mistral supports JSON mode but not full JSON schema
    JSON_MODE_MODELS = {
        "mistral-large-latest",
        "mistral-small-latest",
        "mistral-medium-latest",
    }

    def __init__(self, api_key: Optional[str] = None):
        """Initialize Mistral provider with API key"""
        from mistralai import Mistral

        self.api_key = api_key or os.getenv("MISTRAL_API_KEY")
        if not self.api_key:
            raise ValueError("MISTRAL_API_KEY not found in environment variables")

        self.client = Mistral(api_key=self.api_key)
        logger.info("Initialized Mistral provider")

    def create_chat_completion(
        self,
        messages: List[Dict[str, str]],
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 500,
        response_format: Optional[Dict] = None,
        timeout: float = 30.0,
        **kwargs
    ) -> Dict[str, Any]:
        """Create chat completion using Mistral API"""
        api_params = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "timeout_ms": int(timeout * 1000),
            **kwargs
        }

        if response_format and response_format.get("type") in ("json_object", "json_schema"):
            if model in self.JSON_MODE_MODELS:
                api_params["response_format"] = {"type": "json_object"}
            else:
                logger.warning(f"Model {model} may not support JSON mode")

        # Mistral SDK uses chat.complete()
        response = self.client.chat.complete(**api_params)

        return {
            "content": response.choices[0].message.content,
            "model": response.model,
            "usage": self._usage(response),
            "raw_response": response
        }

    def _parse_completion(self, messages, response_model, model, temperature, max_tokens, timeout, **kwargs):
        response = self.client.chat.parse(
            model=model,
            messages=messages,
            response_format=response_model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout_ms=int(timeout * 1000),
            **kwargs
        )
        logger.info(f"Structured completion successful: {response.model}, tokens={response.usage.total_tokens}")
        return {
            "parsed_object": response.choices[0].message.parsed,
            "raw_content": response.choices[0].message.content,
            "model": response.model,
            "usage": self._usage(response),
        }

    def get_provider_name(self) -> str:
        return "mistral"


class LLMProviderFactory:
    """Factory class for creating LLM provider instances"""

    # Default models per provider
    DEFAULT_MODELS = {
        "openai": "gpt-4o-mini",
        "mistral": "mistral-small-latest",
    }

    PROVIDERS = {
        "openai": OpenAIProvider,
        "mistral": MistralProvider,
    }

    @staticmethod
    def create_provider(provider_name: Optional[str] = None) -> LLMProvider:
        """
        Create an LLM provider instance based on configuration.

        Args:
            provider_name: Provider to use ("openai", "mistral").
                         If None, reads from LLM_PROVIDER env var (default: "mistral")

        Raises:
            ValueError: If provider is not supported or API key is missing
        """
        provider_name = (provider_name or os.getenv("LLM_PROVIDER", "mistral")).lower()
        logger.info(f"Creating LLM provider: {provider_name}")

        provider_class = LLMProviderFactory.PROVIDERS.get(provider_name)
        if provider_class is None:
            raise ValueError(
                f"Unsupported LLM provider: {provider_name}. "
                f"Supported providers: {', '.join(LLMProviderFactory.PROVIDERS)}"
            )
        return provider_class()

    @staticmethod
    def get_default_model(provider_name: Optional[str] = None) -> str:
        """Default model for a provider; LLM_MODEL overrides it"""
        override = os.getenv("LLM_MODEL")
        if override:
            return override
        provider_name = (provider_name or os.getenv("LLM_PROVIDER", "mistral")).lower()
        return LLMProviderFactory.DEFAULT_MODELS.get(provider_name, "mistral-small-latest")
