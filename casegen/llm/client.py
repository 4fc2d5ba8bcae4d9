"""Model invocation transport: abstract interface plus an OpenAI-compatible client."""

from __future__ import annotations

import abc
import logging
import os
from dataclasses import dataclass

from casegen.errors import GenerationInvocationError
from casegen.llm.models import ModelConfig
from casegen.llm.prompt_templates import SYSTEM_PROMPT

logger = logging.getLogger(__name__)


@dataclass
class InvocationResult:
    """Raw model output plus token usage when the endpoint reports it."""

    text: str
    input_tokens: int | None = None
    output_tokens: int | None = None

    @property
    def has_usage(self) -> bool:
        return self.input_tokens is not None and self.output_tokens is not None


class ModelInvoker(abc.ABC):
    """Abstract base class for model transports."""

    @abc.abstractmethod
    async def invoke(
        self,
        prompt: str,
        model_id: str,
        config: ModelConfig,
        timeout: float,
    ) -> InvocationResult:
        """Send *prompt* to *model_id* and return its raw text.

        Raises:
            GenerationInvocationError: On network, auth or timeout failures.
        """

    async def list_available_model_ids(self) -> list[str]:
        """Return the model ids the remote service currently serves.

        The default implementation has no listing endpoint and returns an
        empty list, which makes health checks probe each model directly.
        """
        return []

    def serves_listing(self, config: ModelConfig) -> bool:
        """Whether *config* lives on the endpoint that ``list_available_model_ids`` queries."""
        return True

    async def close(self) -> None:
        """Clean up resources."""


class OpenAICompatibleInvoker(ModelInvoker):
    """Calls ``/chat/completions`` on an OpenAI-compatible endpoint.

    Works with Moonshot (Kimi), DashScope (Qwen), DeepSeek and OpenAI, which
    all expose the same chat-completions shape.  Per-model ``base_url`` and
    ``credential_ref`` override the invoker defaults.
    """

    def __init__(
        self,
        base_url: str = "https://api.moonshot.cn/v1",
        api_key_env: str = "KIMI_API_KEY",
        temperature: float = 0.3,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key_env = api_key_env
        self._temperature = temperature

    def _resolve_api_key(self, config: ModelConfig | None) -> str:
        env_name = (config.credential_ref if config else "") or self._api_key_env
        return os.environ.get(env_name, "")

    def _resolve_base_url(self, config: ModelConfig | None) -> str:
        if config and config.base_url:
            return config.base_url.rstrip("/")
        return self._base_url

    def _build_payload(self, prompt: str, model_id: str) -> dict:
        return {
            "model": model_id,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": self._temperature,
            "response_format": {"type": "json_object"},
        }

    async def invoke(
        self,
        prompt: str,
        model_id: str,
        config: ModelConfig,
        timeout: float,
    ) -> InvocationResult:
        import httpx

        api_key = self._resolve_api_key(config)
        if not api_key:
            raise GenerationInvocationError(
                f"No API key configured for model '{model_id}'", model_id=model_id,
            )

        base_url = self._resolve_base_url(config)
        headers = {"Authorization": f"Bearer {api_key}"}

        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                resp = await client.post(
                    f"{base_url}/chat/completions",
                    json=self._build_payload(prompt, model_id),
                    headers=headers,
                )
                resp.raise_for_status()
                data = resp.json()
        except httpx.TimeoutException as e:
            raise GenerationInvocationError(
                f"Request to {base_url} timed out after {timeout:.0f}s", model_id=model_id,
            ) from e
        except httpx.ConnectError as e:
            raise GenerationInvocationError(
                f"Cannot connect to {base_url}", model_id=model_id,
            ) from e
        except httpx.HTTPStatusError as e:
            raise GenerationInvocationError(
                f"HTTP error: {e.response.status_code}", model_id=model_id,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise GenerationInvocationError(
                f"Model call failed: {e}", model_id=model_id,
            ) from e

        try:
            text = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise GenerationInvocationError(
                "Unexpected response payload from chat completions endpoint",
                model_id=model_id,
            ) from e

        usage = data.get("usage") or {}
        return InvocationResult(
            text=text,
            input_tokens=usage.get("prompt_tokens"),
            output_tokens=usage.get("completion_tokens"),
        )

    async def list_available_model_ids(self) -> list[str]:
        """GET ``/models`` on the default endpoint."""
        import httpx

        api_key = self._resolve_api_key(None)
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        async with httpx.AsyncClient(timeout=10.0) as client:
            resp = await client.get(f"{self._base_url}/models", headers=headers)
            resp.raise_for_status()
            data = resp.json()
        return [m["id"] for m in data.get("data", []) if isinstance(m, dict) and "id" in m]

    def serves_listing(self, config: ModelConfig) -> bool:
        return self._resolve_base_url(config) == self._base_url

    async def close(self) -> None:
        """No cleanup needed (stateless HTTP)."""
        pass
