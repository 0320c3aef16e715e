"""
llm.py — Shared LLM client for the extractor and the matcher.

Both the tender-item extractor and the rate matcher talk to the same local
Mistral-7B-Instruct model through llama-cpp-python. This module owns:

  - lazy model loading (the model is ~4GB, loading takes seconds, so it is
    loaded on first use and cached on the client)
  - retry with exponential backoff around generation
  - the multi-strategy JSON parser for model output

Everything that goes wrong in here is raised as ExternalServiceError.
The callers (extraction.py, matching.py) catch it and degrade to their
documented safe defaults; nothing in this module decides what a failure
means for a quotation.
"""

from __future__ import annotations

import json
import logging
import re
import threading
import time
from typing import Any, Callable, Optional

from sor_quotation.config import LLMConfig, config
from sor_quotation.errors import ExternalServiceError

logger = logging.getLogger(__name__)


class LLMClient:
    """
    Thin wrapper around a llama-cpp model.

    Usage:
        client = LLMClient()
        data = client.generate_json("Return a JSON array of ...")

    `model` can be any callable with the llama-cpp call signature
    (prompt, max_tokens=..., temperature=..., stop=...) returning a
    completion dict. When omitted, the GGUF model at
    `settings.model_path` is loaded on first use.
    """

    def __init__(
        self,
        settings: Optional[LLMConfig] = None,
        model: Optional[Callable[..., Any]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings or config.llm
        self._model = model
        self._sleep = sleep
        # llama.cpp contexts are not re-entrant, and the matcher calls us
        # from a thread pool.
        self._lock = threading.Lock()

    def _get_model(self) -> Callable[..., Any]:
        if self._model is not None:
            return self._model

        try:
            from llama_cpp import Llama

            logger.info("Loading LLM from: %s", self.settings.model_path)
            self._model = Llama(
                model_path=self.settings.model_path,
                n_ctx=self.settings.n_ctx,
                n_threads=self.settings.n_threads or None,
                verbose=False,
            )
            logger.info("LLM loaded successfully.")
            return self._model
        except ImportError as exc:
            raise ExternalServiceError(
                "llama-cpp-python is not installed. Install the 'llm' extra "
                "to enable extraction and matching."
            ) from exc
        except FileNotFoundError as exc:
            raise ExternalServiceError(
                f"LLM model file not found: '{self.settings.model_path}'. "
                f"Download Mistral-7B-Instruct-v0.2 GGUF Q4 and set the "
                f"LLM_MODEL_PATH environment variable."
            ) from exc
        except Exception as exc:
            raise ExternalServiceError(f"Failed to load LLM: {exc}") from exc

    def generate(self, prompt: str) -> str:
        """
        Generate text with retry and exponential backoff.

        Raises:
            ExternalServiceError: model unavailable or all retries failed.
        """
        with self._lock:
            model = self._get_model()
            last_error: Optional[Exception] = None

            for attempt in range(1, self.settings.max_retries + 1):
                try:
                    response = model(
                        prompt,
                        max_tokens=self.settings.max_tokens,
                        temperature=self.settings.temperature,
                        # Stops runaway explanation text after the JSON.
                        stop=["```", "\n\n\n"],
                    )
                    text = response["choices"][0]["text"].strip()
                    logger.debug(
                        "LLM generated %d chars on attempt %d/%d",
                        len(text), attempt, self.settings.max_retries
                    )
                    return text
                except Exception as exc:
                    last_error = exc
                    if attempt == self.settings.max_retries:
                        break
                    delay = self.settings.retry_base_delay * (2 ** (attempt - 1))
                    logger.warning(
                        "LLM attempt %d/%d failed: %s. Retrying in %.1fs.",
                        attempt, self.settings.max_retries, exc, delay
                    )
                    self._sleep(delay)

        raise ExternalServiceError(
            f"LLM generation failed after {self.settings.max_retries} "
            f"attempts: {last_error}"
        )

    def generate_json(self, prompt: str) -> Any:
        """Generate and parse. Raises ExternalServiceError on unparseable output."""
        raw_output = self.generate(prompt)
        parsed = parse_json_output(raw_output)
        if parsed is None:
            logger.error(
                "Could not parse LLM output as JSON. First 500 chars: %s",
                raw_output[:500]
            )
            raise ExternalServiceError("LLM returned output that is not valid JSON")
        return parsed


def parse_json_output(text: str) -> Optional[Any]:
    """
    Multi-strategy JSON parser for LLM output.

    Strategies, in order of strictness:
    1. Direct parse
    2. Strip markdown fences and retry
    3. Regex-extract the outermost JSON array or object
    4. Give up and return None (handled by the caller)
    """
    if not text or not text.strip():
        return None

    # Strategy 1: direct parse
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    # Strategy 2: strip markdown fences
    cleaned = re.sub(r"```(?:json)?\s*", "", text)
    cleaned = cleaned.strip().rstrip("`")
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    # Strategy 3: whichever bracket opens first decides array vs object
    patterns = [r"\[[\s\S]*\]", r"\{[\s\S]*\}"]
    first_brace = cleaned.find("{")
    first_bracket = cleaned.find("[")
    if first_brace != -1 and (first_bracket == -1 or first_brace < first_bracket):
        patterns.reverse()

    for pattern in patterns:
        match = re.search(pattern, cleaned)
        if match:
            try:
                return json.loads(match.group())
            except json.JSONDecodeError:
                continue

    return None


_default_client: Optional[LLMClient] = None
_default_lock = threading.Lock()


def get_default_client() -> LLMClient:
    """Process-wide client, so the model is loaded at most once."""
    global _default_client
    with _default_lock:
        if _default_client is None:
            _default_client = LLMClient()
        return _default_client
