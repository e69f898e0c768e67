import os
from dataclasses import dataclass
from typing import Mapping, Optional

PROVIDERS = ("yahoo", "stonks")

_TRUE = {"1", "true", "yes", "on"}


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUE


@dataclass(frozen=True)
class Settings:
    """Configuração imutável, montada uma vez no startup e injetada no app."""

    host: str = "0.0.0.0"
    port: int = 9340
    report_volume: bool = False
    typed_symbols: bool = False
    provider: str = "yahoo"
    # Não martelar o upstream: 10 min de frescor, 20 min de retenção.
    cache_ttl: float = 600.0
    cache_retention: float = 1200.0
    cache_maxsize: int = 4096
    upstream_timeout: float = 4.0
    max_concurrency: int = 5
    log_level: str = "INFO"

    def __post_init__(self):
        if self.provider not in PROVIDERS:
            raise ValueError(f"unknown provider {self.provider!r}, expected one of {PROVIDERS}")
        if self.cache_ttl <= 0:
            raise ValueError("cache_ttl must be positive")
        if self.cache_retention < self.cache_ttl:
            raise ValueError("cache_retention must be >= cache_ttl")
        if self.upstream_timeout <= 0:
            raise ValueError("upstream_timeout must be positive")
        if self.max_concurrency < 1 or self.cache_maxsize < 1:
            raise ValueError("max_concurrency and cache_maxsize must be >= 1")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        return cls(
            host=env.get("QUOTES_HOST", "0.0.0.0"),
            port=int(env.get("QUOTES_PORT", "9340")),
            report_volume=_env_bool(env, "QUOTES_VOLUME", False),
            typed_symbols=_env_bool(env, "QUOTES_TYPED_SYMBOLS", False),
            provider=env.get("QUOTES_PROVIDER", "yahoo").strip().lower(),
            cache_ttl=float(env.get("QUOTES_CACHE_TTL", "600")),
            cache_retention=float(env.get("QUOTES_CACHE_RETENTION", "1200")),
            cache_maxsize=int(env.get("QUOTES_CACHE_SIZE", "4096")),
            upstream_timeout=float(env.get("QUOTES_TIMEOUT", "4.0")),
            max_concurrency=int(env.get("QUOTES_MAX_CONCURRENCY", "5")),
            log_level=env.get("LOG_LEVEL", "INFO"),
        )
