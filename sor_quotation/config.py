"""
config.py — Central configuration for SOR Quotation.

All tunable params live here. Most of them can be overridden with
environment variables so the same build runs on a laptop (small model,
local JSON catalog) and on the shared estimating box (bigger model,
catalog on the network drive).

Every module imports the same `config` singleton at the bottom of this
file. Tests that need different values construct their own Config and
pass the relevant section in explicitly.
"""

from dataclasses import dataclass, field
import os
import logging

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %d", name, raw, default)
        return default


@dataclass
class LLMConfig:
    """
    Mistral-7B-Instruct settings via llama-cpp-python.

    Both the tender-item extractor and the rate matcher share this model.
    Extraction prompts can be long (a pasted BOQ easily runs to a few
    thousand tokens), so n_ctx stays at 8192.
    """
    model_path: str = os.getenv(
        "LLM_MODEL_PATH",
        "models/mistral-7b-instruct-v0.2.Q4_K_M.gguf",
    )
    n_ctx: int = 8192
    max_tokens: int = 2048
    # llama.cpp treats 0.0 as greedy decoding, which can get stuck in
    # repetition loops on long JSON arrays.
    temperature: float = 0.1
    n_threads: int = 0  # 0 = auto-detect
    max_retries: int = 3
    retry_base_delay: float = 2.0


@dataclass
class ExtractionConfig:
    """Limits on what we hand to the extractor."""
    # Per LLM call. Roughly 6k tokens of tender text, leaves room for the
    # prompt and the JSON answer inside n_ctx. Longer input is chunked.
    max_input_chars: int = 24000


@dataclass
class MatchingConfig:
    """
    Per-item match resolution.

    Each tender line is matched independently, so lines are fanned out
    on a small thread pool. 1 means strictly sequential.
    """
    max_workers: int = _env_int("SOR_MATCH_WORKERS", 4)


@dataclass
class StoreConfig:
    """Where the rate catalog lives on disk. Empty means the API keeps it in memory."""
    catalog_path: str = os.getenv("SOR_CATALOG_PATH", "data/sor_catalog.json")


@dataclass
class Config:
    """Master config — instantiated once, used everywhere."""
    llm: LLMConfig = field(default_factory=LLMConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    store: StoreConfig = field(default_factory=StoreConfig)

    max_file_size_mb: int = 50
    supported_formats: tuple = (".pdf", ".docx", ".txt", ".md", ".csv")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    def __post_init__(self):
        """Validate config on startup so a typo in an env var fails here
        instead of halfway through a quotation build."""
        if self.matching.max_workers < 1:
            raise ValueError(
                f"max_workers must be >= 1, got {self.matching.max_workers}"
            )
        if self.llm.max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {self.llm.max_retries}")
        if self.llm.retry_base_delay < 0:
            raise ValueError(
                f"retry_base_delay must be >= 0, got {self.llm.retry_base_delay}"
            )
        if self.extraction.max_input_chars <= 0:
            raise ValueError(
                f"max_input_chars must be > 0, got {self.extraction.max_input_chars}"
            )

        if self.llm.temperature > 1.0:
            logger.warning(
                "LLM temperature is %.2f. Extraction output gets noticeably "
                "less stable above 1.0.", self.llm.temperature
            )


# Singleton — every module imports this same instance
config = Config()
