"""Configuration utilities for the AI dispatch worker."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional
from urllib.parse import urlparse

from beast_mailbox_core.redis_mailbox import MailboxConfig
from dotenv import load_dotenv

from .errors import ConfigError
from .providers.base import ProviderName

# Load secrets from home directory first, then fall back to local lookups.
load_dotenv(Path.home() / ".env", override=False)
load_dotenv(override=False)

DEFAULT_MODELS = {
    ProviderName.CLAUDE: "claude-3-7-sonnet-latest",
    ProviderName.MISTRAL: "mistral-medium-latest",
    ProviderName.IONOS: "meta-llama/Llama-3.3-70B-Instruct",
    ProviderName.LITELLM: "gpt-oss:120b",
    ProviderName.BEDROCK: "anthropic.claude-3-7-sonnet-20250219-v1:0",
    ProviderName.TELEKOM: "Llama-3.3-70B-Instruct",
}

DEFAULT_BASE_URLS = {
    ProviderName.MISTRAL: "https://api.mistral.ai/v1",
    ProviderName.IONOS: "https://openai.inference.de-txl.ionos.com/v1",
    ProviderName.TELEKOM: "https://llm-server.llmhub.t-systems.net/v2",
}

_KEY_VARIABLES = {
    ProviderName.CLAUDE: "CLAUDE_API_KEY",
    ProviderName.MISTRAL: "MISTRAL_API_KEY",
    ProviderName.IONOS: "IONOS_API_TOKEN",
    ProviderName.LITELLM: "LITELLM_API_KEY",
    ProviderName.TELEKOM: "TELEKOM_API_KEY",
}


def _require(value: Optional[str], name: str) -> str:
    if value is None or value.strip() == "":
        raise ConfigError(f"{name} is required but was not provided")
    return value


@dataclass(frozen=True)
class ProviderSettings:
    """Credentials and defaults for one vendor."""

    name: ProviderName
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    default_model: str = ""
    region: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        if self.name is ProviderName.BEDROCK:
            return bool(self.default_model) and bool(self.region)
        if self.name is ProviderName.LITELLM:
            return bool(self.api_key) and bool(self.base_url)
        return bool(self.api_key)


def _provider_settings(env: Mapping[str, str]) -> Dict[ProviderName, ProviderSettings]:
    settings: Dict[ProviderName, ProviderSettings] = {}
    for name in ProviderName:
        prefix = name.value.upper()
        if name is ProviderName.BEDROCK:
            model = env.get("BEDROCK_CLAUDE_MODEL_ARN") or env.get("BEDROCK_CLAUDE_MODEL_ID") or ""
            settings[name] = ProviderSettings(
                name=name,
                default_model=model,
                region=env.get("AWS_REGION", "eu-central-1"),
            )
            continue
        settings[name] = ProviderSettings(
            name=name,
            api_key=env.get(_KEY_VARIABLES[name]) or None,
            base_url=env.get(f"{prefix}_BASE_URL") or DEFAULT_BASE_URLS.get(name),
            default_model=env.get(f"{prefix}_MODEL") or DEFAULT_MODELS[name],
        )
    return settings


@dataclass(frozen=True)
class WorkerConfig:
    """Runtime configuration for the AI dispatch worker."""

    worker_id: str
    redis_url: Optional[str]
    stream_prefix: str
    concurrency: int
    retry_max: int
    retry_backoff_base: float
    request_timeout: float
    multi_intent_timeout: float
    pending_lock_ttl: int
    metrics_backend: str
    metrics_port: Optional[int]
    log_level: str
    poll_interval: float
    stream_maxlen: int
    node_env: str
    default_provider: ProviderName
    default_model: Optional[str]
    pro_provider: ProviderName
    pro_model: str
    ultra_provider: ProviderName
    ultra_model: str
    privacy_provider: ProviderName
    providers: Dict[ProviderName, ProviderSettings] = field(default_factory=dict)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "WorkerConfig":
        """Build configuration from environment variables."""
        env = os.environ if env is None else env

        node_env = env.get("NODE_ENV", "production").strip().lower()
        default_level = "DEBUG" if node_env == "development" else "INFO"

        try:
            concurrency = int(env.get("AI_WORKER_CONCURRENCY", "4"))
            retry_max = int(env.get("AI_RETRY_MAX", "3"))
            retry_backoff_base = float(env.get("AI_RETRY_BACKOFF_BASE", "1.0"))
            request_timeout = float(env.get("AI_REQUEST_TIMEOUT", "120.0"))
            multi_intent_timeout = float(env.get("AI_MULTI_INTENT_TIMEOUT", "30.0"))
            pending_lock_ttl = int(env.get("AI_PENDING_LOCK_TTL", "5"))
            metrics_port_raw = env.get("AI_METRICS_PORT")
            metrics_port = int(metrics_port_raw) if metrics_port_raw else None
            poll_interval = float(env.get("AI_POLL_INTERVAL", "1.0"))
            stream_maxlen = int(env.get("AI_STREAM_MAXLEN", "1000"))
        except ValueError as exc:
            raise ConfigError(f"Invalid numeric configuration: {exc}") from exc

        metrics_backend = env.get("AI_METRICS_BACKEND", "logging").strip().lower()

        if concurrency < 1:
            raise ConfigError("AI_WORKER_CONCURRENCY must be >= 1")
        if retry_max < 1:
            raise ConfigError("AI_RETRY_MAX must be >= 1")
        if retry_backoff_base < 0:
            raise ConfigError("AI_RETRY_BACKOFF_BASE must be >= 0")
        if request_timeout <= 0:
            raise ConfigError("AI_REQUEST_TIMEOUT must be > 0")
        if multi_intent_timeout <= 0:
            raise ConfigError("AI_MULTI_INTENT_TIMEOUT must be > 0")
        if pending_lock_ttl < 1:
            raise ConfigError("AI_PENDING_LOCK_TTL must be >= 1")
        if poll_interval <= 0:
            raise ConfigError("AI_POLL_INTERVAL must be > 0")
        if stream_maxlen < 1:
            raise ConfigError("AI_STREAM_MAXLEN must be >= 1")
        if metrics_backend not in {"logging", "prometheus"}:
            raise ConfigError("AI_METRICS_BACKEND must be 'logging' or 'prometheus'")
        if metrics_port is not None and metrics_port < 0:
            raise ConfigError("AI_METRICS_PORT must be >= 0 when provided")

        return cls(
            worker_id=env.get("AI_WORKER_ID", "ai-worker"),
            redis_url=env.get("REDIS_URL") or None,
            stream_prefix=env.get("AI_STREAM_PREFIX", "gruenerator:ai"),
            concurrency=concurrency,
            retry_max=retry_max,
            retry_backoff_base=retry_backoff_base,
            request_timeout=request_timeout,
            multi_intent_timeout=multi_intent_timeout,
            pending_lock_ttl=pending_lock_ttl,
            metrics_backend=metrics_backend,
            metrics_port=metrics_port,
            log_level=env.get("AI_LOG_LEVEL", default_level).upper(),
            poll_interval=poll_interval,
            stream_maxlen=stream_maxlen,
            node_env=node_env,
            default_provider=ProviderName.parse(env.get("AI_DEFAULT_PROVIDER", "mistral")),
            default_model=env.get("AI_DEFAULT_MODEL") or None,
            pro_provider=ProviderName.parse(env.get("AI_PRO_PROVIDER", "mistral")),
            pro_model=env.get("AI_PRO_MODEL", "magistral-medium-latest"),
            ultra_provider=ProviderName.parse(env.get("AI_ULTRA_PROVIDER", "litellm")),
            ultra_model=env.get("AI_ULTRA_MODEL", "gpt-oss:120b"),
            privacy_provider=ProviderName.parse(env.get("AI_PRIVACY_PROVIDER", "litellm")),
            providers=_provider_settings(env),
        )

    def provider(self, name: ProviderName) -> ProviderSettings:
        return self.providers.get(name) or ProviderSettings(name=name, default_model=DEFAULT_MODELS[name])

    def default_model_for(self, name: ProviderName) -> str:
        return self.provider(name).default_model or DEFAULT_MODELS[name]

    def to_mailbox_config(self) -> MailboxConfig:
        """Translate worker configuration to MailboxConfig used by core library."""
        redis_url = _require(self.redis_url, "REDIS_URL")
        parsed = urlparse(redis_url)
        if parsed.scheme not in {"redis", "rediss"}:
            raise ConfigError("REDIS_URL must use redis:// or rediss:// scheme")

        host = parsed.hostname or "localhost"
        port = parsed.port or 6379
        try:
            db = int((parsed.path or "0").lstrip("/") or "0")
        except ValueError as exc:
            raise ConfigError("Redis DB component must be numeric") from exc

        return MailboxConfig(
            host=host,
            port=port,
            db=db,
            password=parsed.password,
            stream_prefix=self.stream_prefix,
            max_stream_length=self.stream_maxlen,
            poll_interval=self.poll_interval,
        )
