"""
Configuration

Settings for the news agent, read from the environment (and a .env file via
python-dotenv) with defaults, then validated as a whole.
"""

import os
from dataclasses import dataclass, field, asdict
from typing import Dict, Any, Optional
from urllib.parse import urlparse
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""
    pass


@dataclass
class Config:
    """
    Centralized configuration for the news agent.

    All configuration parameters are loaded from environment variables
    with sensible defaults. Validation is performed on initialization.
    """

    # Ollama Settings
    ollama_base_url: str = field(default="http://localhost:11434")
    ollama_embedding_model: str = field(default="nomic-embed-text")
    ollama_llm_model: str = field(default="llama3.1:latest")
    ollama_timeout: int = field(default=30)
    llm_temperature: float = field(default=0.7)
    llm_max_tokens: int = field(default=1000)

    # Embedding Settings
    embedding_dimensions: int = field(default=0)  # 0 = infer from the model
    enable_disk_cache: bool = field(default=True)
    embedding_cache_dir: str = field(default="data/embeddings/cache")

    # Content Fetching Settings
    fetch_timeout: int = field(default=10)
    fetch_max_redirects: int = field(default=5)
    article_max_retries: int = field(default=3)
    retry_backoff: float = field(default=1.0)
    max_raw_chars: int = field(default=15000)

    # Retrieval Settings
    faiss_index_path: str = field(default="data/faiss_index/articles.index")
    top_k: int = field(default=3)
    context_chars: int = field(default=1000)

    # Ingestion Settings
    max_workers: int = field(default=4)
    articles_file: str = field(default="data/articles_dataset.csv")

    # Response Cache TTLs (seconds)
    query_cache_ttl: int = field(default=5 * 60)
    search_cache_ttl: int = field(default=15 * 60)
    article_cache_ttl: int = field(default=30 * 60)
    summary_cache_ttl: int = field(default=60 * 60)

    # Logging
    log_dir: str = field(default="logs")
    log_level: str = field(default="INFO")

    def __post_init__(self):
        """Load configuration from environment and validate."""
        self._load_from_environment()
        self._validate()

    def _load_from_environment(self):
        """Load configuration from environment variables."""
        # Ollama Settings
        self.ollama_base_url = self._get_env_str('OLLAMA_BASE_URL', self.ollama_base_url)
        self.ollama_embedding_model = self._get_env_str('OLLAMA_EMBEDDING_MODEL', self.ollama_embedding_model)
        self.ollama_llm_model = self._get_env_str('OLLAMA_LLM_MODEL', self.ollama_llm_model)
        self.ollama_timeout = self._get_env_int('OLLAMA_TIMEOUT', self.ollama_timeout)
        self.llm_temperature = self._get_env_float('LLM_TEMPERATURE', self.llm_temperature)
        self.llm_max_tokens = self._get_env_int('LLM_MAX_TOKENS', self.llm_max_tokens)

        # Embedding Settings
        self.embedding_dimensions = self._get_env_int('EMBEDDING_DIMENSIONS', self.embedding_dimensions)
        self.enable_disk_cache = self._get_env_bool('ENABLE_DISK_CACHE', self.enable_disk_cache)
        self.embedding_cache_dir = self._get_env_path('EMBEDDING_CACHE_DIR', self.embedding_cache_dir)

        # Content Fetching Settings
        self.fetch_timeout = self._get_env_int('FETCH_TIMEOUT', self.fetch_timeout)
        self.fetch_max_redirects = self._get_env_int('FETCH_MAX_REDIRECTS', self.fetch_max_redirects)
        self.article_max_retries = self._get_env_int('ARTICLE_MAX_RETRIES', self.article_max_retries)
        self.retry_backoff = self._get_env_float('RETRY_BACKOFF', self.retry_backoff)
        self.max_raw_chars = self._get_env_int('MAX_RAW_CHARS', self.max_raw_chars)

        # Retrieval Settings
        self.faiss_index_path = self._get_env_path('FAISS_INDEX_PATH', self.faiss_index_path)
        self.top_k = self._get_env_int('TOP_K', self.top_k)
        self.context_chars = self._get_env_int('CONTEXT_CHARS', self.context_chars)

        # Ingestion Settings
        self.max_workers = self._get_env_int('MAX_WORKERS', self.max_workers)
        self.articles_file = self._get_env_path('ARTICLES_FILE', self.articles_file)

        # Response Cache TTLs
        self.query_cache_ttl = self._get_env_int('QUERY_CACHE_TTL', self.query_cache_ttl)
        self.search_cache_ttl = self._get_env_int('SEARCH_CACHE_TTL', self.search_cache_ttl)
        self.article_cache_ttl = self._get_env_int('ARTICLE_CACHE_TTL', self.article_cache_ttl)
        self.summary_cache_ttl = self._get_env_int('SUMMARY_CACHE_TTL', self.summary_cache_ttl)

        # Logging
        self.log_dir = self._get_env_path('LOG_DIR', self.log_dir)
        self.log_level = self._get_env_str('LOG_LEVEL', self.log_level).upper()

    def _get_env_str(self, key: str, default: str) -> str:
        return os.getenv(key, default).strip()

    def _get_env_number(self, key: str, default, cast):
        raw = os.getenv(key)
        if raw is None:
            return default
        try:
            return cast(raw.strip())
        except ValueError:
            raise ConfigValidationError(
                f"{key} must be a valid {cast.__name__}, got '{raw}'"
            )

    def _get_env_int(self, key: str, default: int) -> int:
        return self._get_env_number(key, default, int)

    def _get_env_float(self, key: str, default: float) -> float:
        return self._get_env_number(key, default, float)

    def _get_env_bool(self, key: str, default: bool) -> bool:
        """Parse true/1/yes/on and false/0/no/off; anything else keeps the default."""
        raw = os.getenv(key, '').strip().lower()
        if raw in ('true', '1', 'yes', 'on'):
            return True
        if raw in ('false', '0', 'no', 'off'):
            return False
        return default

    def _get_env_path(self, key: str, default: str) -> str:
        """Path value with ~ expanded."""
        return os.path.expanduser(os.getenv(key, default).strip())

    def _validate(self):
        """Validate configuration parameters."""
        # Validate non-empty strings
        if not self.ollama_embedding_model:
            raise ConfigValidationError("ollama_embedding_model cannot be empty")
        if not self.ollama_llm_model:
            raise ConfigValidationError("ollama_llm_model cannot be empty")
        if not self.faiss_index_path:
            raise ConfigValidationError("faiss_index_path cannot be empty")

        # Validate positive integers
        positive_int_fields = [
            ('llm_max_tokens', self.llm_max_tokens),
            ('fetch_max_redirects', self.fetch_max_redirects),
            ('article_max_retries', self.article_max_retries),
            ('max_raw_chars', self.max_raw_chars),
            ('top_k', self.top_k),
            ('context_chars', self.context_chars),
            ('max_workers', self.max_workers),
            ('query_cache_ttl', self.query_cache_ttl),
            ('search_cache_ttl', self.search_cache_ttl),
            ('article_cache_ttl', self.article_cache_ttl),
            ('summary_cache_ttl', self.summary_cache_ttl),
        ]

        for field_name, value in positive_int_fields:
            if value <= 0:
                raise ConfigValidationError(
                    f"{field_name} must be positive, got {value}"
                )

        if self.embedding_dimensions < 0:
            raise ConfigValidationError(
                f"embedding_dimensions must be non-negative, got {self.embedding_dimensions}"
            )

        # Validate timeouts (at least 1 second)
        if self.ollama_timeout < 1:
            raise ConfigValidationError(
                f"ollama_timeout must be at least 1, got {self.ollama_timeout}"
            )
        if self.fetch_timeout < 1:
            raise ConfigValidationError(
                f"fetch_timeout must be at least 1, got {self.fetch_timeout}"
            )

        if not 0.0 <= self.llm_temperature <= 2.0:
            raise ConfigValidationError(
                f"llm_temperature must be between 0 and 2, got {self.llm_temperature}"
            )
        if self.retry_backoff < 0:
            raise ConfigValidationError(
                f"retry_backoff must be non-negative, got {self.retry_backoff}"
            )

        if self.log_level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ConfigValidationError(f"Invalid log_level: {self.log_level}")

        # Validate URL format
        parsed = urlparse(self.ollama_base_url)
        if not all([parsed.scheme, parsed.netloc]):
            raise ConfigValidationError(
                f"Invalid URL for ollama_base_url: {self.ollama_base_url}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def update(self, **kwargs):
        """
        Change settings in place, keeping the old values if validation fails.

        Raises:
            ConfigValidationError: Unknown key or invalid resulting config
        """
        unknown = [key for key in kwargs if not hasattr(self, key)]
        if unknown:
            raise ConfigValidationError(f"Unknown configuration parameter(s): {', '.join(unknown)}")

        previous = {key: getattr(self, key) for key in kwargs}
        for key, value in kwargs.items():
            setattr(self, key, value)

        try:
            self._validate()
        except ConfigValidationError:
            for key, value in previous.items():
                setattr(self, key, value)
            raise

    def get_cache_ttls(self) -> Dict[str, int]:
        """Get response cache TTLs in seconds, keyed by operation."""
        return {
            'query': self.query_cache_ttl,
            'search': self.search_cache_ttl,
            'article': self.article_cache_ttl,
            'summary': self.summary_cache_ttl,
        }

    def get_fetch_config(self) -> Dict[str, Any]:
        """Get content-fetching configuration."""
        return {
            'timeout': self.fetch_timeout,
            'max_redirects': self.fetch_max_redirects,
            'max_retries': self.article_max_retries,
            'retry_backoff': self.retry_backoff,
            'max_raw_chars': self.max_raw_chars,
        }


# Singleton instance
_config_instance: Optional[Config] = None


def get_config() -> Config:
    """
    Get the global configuration instance (singleton pattern).

    Returns:
        Config: Global configuration instance
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = Config()
    return _config_instance


def reset_config():
    """Reset the global configuration instance."""
    global _config_instance
    _config_instance = None
