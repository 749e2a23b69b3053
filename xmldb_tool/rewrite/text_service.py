"""
Text rewrite services backed by hosted chat models.

Every supported provider exposes an OpenAI compatible chat-completions endpoint,
so one ``requests`` based client serves them all; providers differ only in their
default endpoint and model. Credentials and overrides come from the settings file
under ``ai.<model>.apikey``, ``ai.<model>.model`` and ``ai.<model>.url``.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

import requests

from ..exceptions import AuthError, ConfigurationError, TransportError


PROVIDER_DEFAULTS = {
    'qwen': ("https://dashscope.aliyuncs.com/compatible-mode/v1", "qwen-plus"),
    'doubao': ("https://ark.cn-beijing.volces.com/api/v3", None),
    'kimi': ("https://api.moonshot.cn/v1", "moonshot-v1-8k"),
    'deepseek': ("https://api.deepseek.com/v1", "deepseek-chat"),
}

MODEL_ALIASES = {
    'tongyi': 'qwen',
    'qianwen': 'qwen',
}

DEFAULT_TIMEOUT_SECONDS = 60


class TextService(ABC):
    """A service that answers a prompt with text."""

    @abstractmethod
    def chat(self, prompt: str) -> str:
        """
        Send ``prompt`` and return the reply text.

        Raises:
            TransportError: Network failure or unusable response
            AuthError: Credentials rejected
        """
        pass


class ChatCompletionClient(TextService):
    """
    Client for an OpenAI compatible ``/chat/completions`` endpoint.

    Args:
        model_name: Canonical provider name, used in messages and settings keys
        api_key: Bearer token; checked when the first request is made
        model: Provider model identifier
        base_url: Endpoint base; ``/chat/completions`` is appended
        timeout: Request timeout in seconds
        session: Optional requests session, injectable for tests
    """

    def __init__(self, model_name: str, api_key: Optional[str], model: Optional[str], base_url: str,
                 timeout: float = DEFAULT_TIMEOUT_SECONDS, session: Optional[requests.Session] = None):
        self.logger = logging.getLogger(__name__)
        self.model_name = model_name
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    def chat(self, prompt: str) -> str:
        if not self.api_key:
            raise ConfigurationError(f"API key for model {self.model_name} is not configured "
                                     f"(ai.{self.model_name}.apikey)")
        if not self.model:
            raise ConfigurationError(f"Model id for {self.model_name} is not configured (ai.{self.model_name}.model)")

        payload = {
            'model': self.model,
            'messages': [{'role': 'user', 'content': prompt}],
        }
        headers = {
            'Authorization': f'Bearer {self.api_key}',
            'Content-Type': 'application/json',
        }

        started = time.time()
        try:
            response = self.session.post(self.endpoint, json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(f"{self.model_name} request failed: {e}", source=self.endpoint)

        if response.status_code in (401, 403):
            raise AuthError(f"{self.model_name} rejected credentials: {response.status_code}", source=self.endpoint)
        if response.status_code != 200:
            raise TransportError(f"{self.model_name} returned {response.status_code}: {response.text[:200]}",
                                 source=self.endpoint)

        try:
            content = response.json()['choices'][0]['message']['content']
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise TransportError(f"{self.model_name} returned an unexpected payload: {e}", source=self.endpoint)

        self.logger.info(f"{self.model_name} answered in {(time.time() - started) * 1000:.0f}ms")
        self.logger.debug(f"{self.model_name} reply: {content}")
        return content or ''


def _provider_factory(name: str) -> Callable[..., TextService]:
    default_url, default_model = PROVIDER_DEFAULTS[name]

    def create(config_manager, session: Optional[requests.Session] = None) -> TextService:
        return ChatCompletionClient(
            model_name=name,
            api_key=config_manager.get_property(f"ai.{name}.apikey"),
            model=config_manager.get_property(f"ai.{name}.model", default_model),
            base_url=config_manager.get_property(f"ai.{name}.url", default_url),
            timeout=float(config_manager.get_property("ai.timeout", DEFAULT_TIMEOUT_SECONDS)),
            session=session,
        )

    return create


_REGISTRY: Dict[str, Callable[..., TextService]] = {name: _provider_factory(name) for name in PROVIDER_DEFAULTS}


def register_text_service(name: str, factory: Callable[..., TextService]) -> None:
    """Register (or replace) the factory for a model name."""
    _REGISTRY[name.strip().lower()] = factory


def supported_models() -> List[str]:
    return sorted(_REGISTRY)


def canonical_model_name(model_name: str) -> str:
    """
    Resolve a user supplied model name to a registered one.

    Raises:
        ConfigurationError: If the name is empty or unsupported
    """
    if not model_name or not model_name.strip():
        raise ConfigurationError("Model name must not be empty")
    normalized = model_name.strip().lower()
    if normalized in _REGISTRY:
        return normalized
    for alias, canonical in MODEL_ALIASES.items():
        if alias in normalized:
            return canonical
    if 'deep' in normalized and 'seek' in normalized:
        return 'deepseek'
    raise ConfigurationError(f"Unsupported model: {model_name} (supported: {', '.join(supported_models())})")


def create_text_service(model_name: str, config_manager, **kwargs) -> TextService:
    """Build the text service registered for ``model_name``."""
    return _REGISTRY[canonical_model_name(model_name)](config_manager, **kwargs)
