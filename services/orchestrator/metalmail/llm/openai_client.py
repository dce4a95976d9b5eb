from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx


logger = logging.getLogger(__name__)


class OpenAICompatClient:
    """
    Minimal async client for OpenAI-compatible chat completion endpoints.
    Base URL example: https://api.openai.com (no trailing /v1).
    """

    def __init__(self, base_url: str = "https://api.openai.com", api_key: str = "", timeout: float = 120.0):
        self.base_url = base_url.rstrip("/")
        limits = httpx.Limits(max_keepalive_connections=10, max_connections=20, keepalive_expiry=30.0)
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(connect=5.0, read=timeout, write=10.0, pool=5.0),
            limits=limits,
            headers=headers,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def _payload(
        self,
        model: str,
        messages: List[Dict[str, Any]],
        functions: Optional[List[Dict[str, Any]]],
        temperature: Optional[float],
        stream: bool,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"model": model, "messages": messages, "stream": stream}
        if functions:
            payload["functions"] = functions
            payload["function_call"] = "auto"
        if temperature is not None:
            payload["temperature"] = float(temperature)
        return payload

    async def chat(
        self,
        model: str,
        messages: List[Dict[str, Any]],
        functions: Optional[List[Dict[str, Any]]] = None,
        temperature: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Single non-streaming completion. Returns the first choice's message dict
        ({"role", "content", "function_call"?}).
        """
        url = f"{self.base_url}/v1/chat/completions"
        logger.debug("[llm] chat -> url=%s model=%s functions=%d", url, model, len(functions or []))
        r = await self._client.post(url, json=self._payload(model, messages, functions, temperature, False))
        r.raise_for_status()
        data = r.json()
        choices = data.get("choices") or []
        if not choices:
            raise RuntimeError("Invalid chat completion response: no choices")
        return choices[0].get("message") or {}

    async def chat_stream(
        self,
        model: str,
        messages: List[Dict[str, Any]],
        functions: Optional[List[Dict[str, Any]]] = None,
        temperature: Optional[float] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        """
        Streams chat completion deltas. Yields normalized dict chunks:
          {"content": str}
          {"function_call": {"name"?: str, "arguments"?: str}}
          {"done": True}
        """
        url = f"{self.base_url}/v1/chat/completions"
        logger.debug("[llm] chat_stream -> url=%s model=%s", url, model)

        async with self._client.stream(
            "POST", url, json=self._payload(model, messages, functions, temperature, True)
        ) as resp:
            resp.raise_for_status()
            async for line in resp.aiter_lines():
                if not line or not line.startswith("data:"):
                    continue
                data_str = line[5:].strip()
                if not data_str:
                    continue
                if data_str == "[DONE]":
                    break
                try:
                    data = json.loads(data_str)
                except json.JSONDecodeError:
                    # Skip malformed chunks
                    continue
                choices = data.get("choices") or []
                if not choices:
                    continue
                delta = choices[0].get("delta") or {}
                content_piece = delta.get("content")
                if content_piece:
                    yield {"content": content_piece}
                fc = delta.get("function_call")
                if isinstance(fc, dict) and (fc.get("name") or fc.get("arguments")):
                    yield {"function_call": {k: v for k, v in fc.items() if k in ("name", "arguments") and v}}
        yield {"done": True}
