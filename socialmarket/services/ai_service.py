"""AI provider — thin client for an OpenAI-compatible REST API.

Chat completion, embeddings, moderation and image generation. The base URL
is configurable so any compatible provider can be swapped in.
Raises AIProviderError on any transport or provider failure; callers map it
to ExternalApiError.
"""

import logging

import requests

logger = logging.getLogger(__name__)


class AIProviderError(Exception):
    """The AI provider failed or returned something unusable."""


class OpenAIProvider:

    def __init__(self, api_key=None, base_url="https://api.openai.com/v1",
                 chat_model="gpt-4o-mini", embedding_model="text-embedding-3-small",
                 image_model="dall-e-3", timeout=60):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.chat_model = chat_model
        self.embedding_model = embedding_model
        self.image_model = image_model
        self.timeout = timeout

    def init_app(self, app):
        self.api_key = app.config.get("OPENAI_API_KEY")
        self.base_url = app.config.get("OPENAI_BASE_URL", self.base_url).rstrip("/")
        self.chat_model = app.config.get("OPENAI_CHAT_MODEL", self.chat_model)
        self.embedding_model = app.config.get("OPENAI_EMBEDDING_MODEL", self.embedding_model)
        self.image_model = app.config.get("OPENAI_IMAGE_MODEL", self.image_model)
        self.timeout = app.config.get("OPENAI_TIMEOUT", self.timeout)
        app.extensions["ai_provider"] = self

    def _post(self, path, payload):
        if not self.api_key:
            raise AIProviderError("AI provider is not configured")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            resp = requests.post(
                f"{self.base_url}{path}", headers=headers, json=payload,
                timeout=self.timeout,
            )
            resp.raise_for_status()
            return resp.json()
        except requests.RequestException as e:
            raise AIProviderError(f"AI request to {path} failed: {e}") from e
        except ValueError as e:
            raise AIProviderError(f"AI response from {path} was not JSON") from e

    def chat_completion(self, messages, temperature=0.7, max_tokens=500, model=None):
        """Return the assistant's reply text."""
        data = self._post("/chat/completions", {
            "model": model or self.chat_model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise AIProviderError("Chat completion returned no choices") from e

    def embed(self, text):
        data = self._post("/embeddings", {
            "model": self.embedding_model,
            "input": text,
        })
        items = data.get("data") or []
        return items[0].get("embedding", []) if items else []

    def moderate(self, text):
        """Return {"flagged": bool, "categories": [names of flagged categories]}."""
        data = self._post("/moderations", {"input": text})
        results = data.get("results") or []
        if not results:
            raise AIProviderError("Moderation returned no results")
        result = results[0]
        categories = sorted(
            name for name, hit in (result.get("categories") or {}).items() if hit
        )
        return {"flagged": bool(result.get("flagged")), "categories": categories}

    def generate_image(self, prompt, width=1024, height=1024):
        data = self._post("/images/generations", {
            "model": self.image_model,
            "prompt": prompt,
            "n": 1,
            "size": f"{width}x{height}",
        })
        items = data.get("data") or []
        if not items or not items[0].get("url"):
            raise AIProviderError("Image generation returned no image")
        return {
            "url": items[0]["url"],
            "width": width,
            "height": height,
            "content_type": "image/png",
        }
