"""Thin client for calling the local Ollama chat API."""

import time

import requests

from urbanai import config
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="ollama_client")


class OllamaClient:
    """Minimal client for the Ollama chat API."""

    def __init__(self, settings: config.Settings | None = None):
        """Initialize client configuration from settings."""
        settings = settings or config.settings
        self.url = f"{settings.ollama_base_url}/api/chat"
        self.model = settings.ollama_model
        self.options = settings.ollama_options
        self.timeout = settings.ollama_timeout_seconds
        self.max_retries = settings.ollama_retries
        self.retry_backoff_sec = settings.ollama_retry_backoff_seconds

    def chat(self, messages) -> str:
        """Send a chat request and return the assistant content.

        Raises requests.RequestException when every attempt fails to connect and
        RuntimeError for non-200 or non-JSON answers.
        """
        payload = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "options": self.options,
        }

        for attempt in range(self.max_retries + 1):
            try:
                logger.debug("Ollama POST attempt %d", attempt + 1, extra={"model": self.model})
                r = requests.post(self.url, json=payload, timeout=self.timeout)
            except requests.exceptions.RequestException as exc:
                logger.warning("Ollama POST failed on attempt %d: %s", attempt + 1, exc)
                if attempt < self.max_retries:
                    time.sleep(self.retry_backoff_sec)
                    continue
                raise

            if r.status_code == 200:
                break

            error_text = (r.text or "")[:200]
            if r.status_code >= 500 and attempt < self.max_retries:
                logger.warning(
                    "Ollama returned %d; retrying (attempt %d/%d).",
                    r.status_code,
                    attempt + 1,
                    self.max_retries + 1,
                )
                time.sleep(self.retry_backoff_sec)
                continue
            raise RuntimeError(
                f"Ollama POST failed with status {r.status_code}: {error_text} "
                f"(model={self.model}, url={self.url})"
            )

        try:
            data = r.json()
        except ValueError as exc:
            raise RuntimeError(f"Ollama returned non-JSON response: {r.text[:200]}") from exc
        content = data.get("message", {}).get("content", "")
        if isinstance(content, (dict, list)):
            content = str(content)
        return content
