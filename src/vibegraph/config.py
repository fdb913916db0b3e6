"""Application configuration dataclasses.

Frozen dataclasses with sensible defaults for each subsystem.
No env-var loading or YAML parsing; plain defaults that can
be overridden at construction time.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class LLMConfig:
    """LLM provider settings used by the classification pipeline."""

    provider: str = "openai"
    model: str = "grok-3-mini"
    api_key: str | None = None
    base_url: str = "https://api.x.ai/v1"
    temperature: float = 0.1
    max_tokens: int = 8192
    timeout_seconds: float = 60.0
    # Send the envelope JSON schema as ``response_format``
    structured_output: bool = True


@dataclass(frozen=True)
class ProfileAPIConfig:
    """Profile-lookup API client settings."""

    base_url: str = "https://api.socialapi.me"
    api_key: str | None = None
    timeout_seconds: float = 15.0
    # 429 handling: attempts and exponential backoff base (1s, 2s, 4s)
    max_retries: int = 3
    backoff_base_seconds: float = 1.0
    # Parallel lookups
    max_concurrency: int = 10
    lookup_batch_size: int = 10
    inter_batch_delay_seconds: float = 0.1
    # Follower/following pagination
    page_size: int = 200
    max_pages: int = 50


@dataclass(frozen=True)
class ProfileCacheConfig:
    """Redis profile cache settings."""

    key_prefix: str = "vibegraph"
    ttl_seconds: int = 24 * 3600
    enabled: bool = True


@dataclass(frozen=True)
class SyncConfig:
    """Batch synchronizer tuning."""

    upsert_chunk_size: int = 50
    edge_batch_size: int = 500
    staleness_hours: float = 1080.0
    max_concurrent_chunks: int = 4


@dataclass(frozen=True)
class ClassificationConfig:
    """Tuneable parameters for the classification pipeline."""

    freshness_days: float = 30.0
    # Spam short-circuit: both counts strictly below this value
    spam_follower_threshold: int = 10
    llm_batch_size: int = 20
    max_retries: int = 2
    retry_backoff_seconds: float = 1.0
    link_affiliations: bool = True


@dataclass(frozen=True)
class AuditConfig:
    """Settings for the JSONL audit logger."""

    file_path: str = "vibegraph_audit.jsonl"
    enabled: bool = True
