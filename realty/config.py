"""
Runtime configuration.

Values are read from ``REALTY_*`` environment variables (a ``.env`` file in
the working directory is loaded first) and can be overridden field by field.
A ``Config`` instance is passed explicitly to every component.
"""
import json
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Iterable, List, Optional, Tuple

from dotenv import load_dotenv


DEFAULT_BASE_URL = "https://www.olx.uz/nedvizhimost/kvartiry/tashkent/?currency=UYE"
EXHAUSTED_POLICIES = ("skip", "exclude")
STATE_DB_FILE = "state.db"


def _env(name: str, default: str) -> str:
    return os.getenv(f"REALTY_{name}", default)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(f"REALTY_{name}")
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def flatten_keywords(groups: Iterable[Any]) -> Tuple[str, ...]:
    """Flatten keywords given as strings or groups of strings, dropping blanks and duplicates."""
    out: List[str] = []
    for item in groups:
        if isinstance(item, str):
            candidates = [item]
        else:
            candidates = list(item)
        for kw in candidates:
            kw = kw.strip()
            if kw and kw not in out:
                out.append(kw)
    return tuple(out)


def load_keywords_file(path: str) -> Tuple[str, ...]:
    """Load keywords from a JSON file holding a list of strings or a list of lists."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"Keywords file must contain a JSON array: {path}")
    return flatten_keywords(data)


@dataclass(frozen=True)
class Config:
    """Application configuration."""

    # Target site and artifacts
    base_url: str = DEFAULT_BASE_URL
    directory: str = "./output"
    links_file: str = "links.json"
    output_file: str = "filtered.json"
    processed_file: str = "processed_data.json"
    leaked_file: str = "processed_data_leaked.json"
    debug_file: str = "debug_processed_data.json"

    # Browser
    headless: bool = True
    navigation_timeout_ms: int = 60_000
    details_timeout_ms: int = 90_000

    # Stage 1
    max_pages: int = 25
    navigation_retries: int = 25
    save_every: int = 3

    # Stage 2
    keywords: Tuple[str, ...] = ()
    fuzzy_cutoff: float = 80.0
    # empty means a SQLite database inside ``directory``
    store_url: str = ""
    concurrency: int = 2
    max_attempts: int = 3
    exhausted_policy: str = "skip"
    resume: bool = True

    # Stage 3
    exchange_rate: float = 12900.0
    ollama_model: str = "mistral"
    ollama_base_url: str = "http://localhost:11434"
    ollama_temperature: float = 0.0

    @classmethod
    def from_env(cls, env_file: Optional[str] = ".env", **overrides: Any) -> "Config":
        """Build configuration from the environment, then apply overrides."""
        if env_file:
            load_dotenv(env_file, override=False)

        keywords: Tuple[str, ...] = ()
        keywords_file = _env("KEYWORDS_FILE", "")
        if keywords_file:
            keywords = load_keywords_file(keywords_file)
        elif _env("KEYWORDS", ""):
            keywords = flatten_keywords(_env("KEYWORDS", "").split(","))

        cfg = cls(
            base_url=_env("BASE_URL", DEFAULT_BASE_URL),
            directory=_env("DIRECTORY", "./output"),
            links_file=_env("LINKS_FILE", "links.json"),
            output_file=_env("OUTPUT_FILE", "filtered.json"),
            processed_file=_env("PROCESSED_FILE", "processed_data.json"),
            leaked_file=_env("LEAKED_FILE", "processed_data_leaked.json"),
            debug_file=_env("DEBUG_FILE", "debug_processed_data.json"),
            headless=_env_bool("HEADLESS", True),
            max_pages=int(_env("MAX_PAGES", "25")),
            keywords=keywords,
            fuzzy_cutoff=float(_env("FUZZY_CUTOFF", "80")),
            store_url=_env("STORE_URL", ""),
            concurrency=int(_env("CONCURRENCY", "2")),
            max_attempts=int(_env("MAX_ATTEMPTS", "3")),
            exhausted_policy=_env("EXHAUSTED_POLICY", "skip"),
            resume=_env_bool("RESUME", True),
            exchange_rate=float(_env("EXCHANGE_RATE", "12900")),
            ollama_model=_env("OLLAMA_MODEL", "mistral"),
            ollama_base_url=_env("OLLAMA_BASE_URL", "http://localhost:11434"),
        )
        overrides = {k: v for k, v in overrides.items() if v is not None}
        return replace(cfg, **overrides) if overrides else cfg

    def with_overrides(self, **overrides: Any) -> "Config":
        overrides = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **overrides)

    def path(self, name: str) -> Path:
        """Absolute path of an artifact inside the output directory."""
        return Path(self.directory) / name

    @property
    def state_store_url(self) -> str:
        """Link State Store URL, defaulting to ``state.db`` next to the other artifacts."""
        return self.store_url or f"sqlite:///{self.path(STATE_DB_FILE).as_posix()}"

    def validate(self) -> None:
        """Validate configuration on startup."""
        if not self.directory or not self.output_file:
            raise ValueError("Invalid configuration: directory or output_file is missing.")
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {self.concurrency}")
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.exhausted_policy not in EXHAUSTED_POLICIES:
            raise ValueError(
                f"exhausted_policy must be one of {EXHAUSTED_POLICIES}, got {self.exhausted_policy!r}"
            )
        if not 0 <= self.fuzzy_cutoff <= 100:
            raise ValueError(f"fuzzy_cutoff must be within 0..100, got {self.fuzzy_cutoff}")
        if self.exchange_rate <= 0:
            raise ValueError(f"exchange_rate must be positive, got {self.exchange_rate}")
