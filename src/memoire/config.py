"""Configuration loading from environment variables and memoire.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_DEFAULT_HOME = Path.home() / ".memoire"
_DEFAULT_MEMORY_DIR = _DEFAULT_HOME / "memory"
_CONFIG_FILENAME = "memoire.toml"
_TRUTHY = {"1", "true", "yes", "on"}


def _flag(env_name: str, file_value: object, default: bool = False) -> bool:
    raw = os.getenv(env_name)
    if raw is not None:
        return raw.strip().lower() in _TRUTHY
    if file_value is None:
        return default
    if isinstance(file_value, str):
        return file_value.strip().lower() in _TRUTHY
    return bool(file_value)


@dataclass
class FeatureFlags:
    """Opt-in memory features. All of them call paid models."""

    semantic_memory: bool = False
    auto_memory_extraction: bool = False
    conversation_summaries: bool = False


@dataclass
class ChatConfig:
    """Chat model used for summaries and fact extraction."""

    model: str = "claude-sonnet-4-5-20250929"
    max_tokens: int = 1024
    timeout: int = 120


@dataclass
class EmbeddingConfig:
    model: str = "text-embedding-3-small"
    dimension: int = 1536


@dataclass
class SchedulerConfig:
    """Scheduler configuration."""

    rotation_cron: str = "0 3 * * *"
    tick_interval: int = 300


@dataclass
class MemoireConfig:
    """Top-level memoire configuration."""

    features: FeatureFlags = field(default_factory=FeatureFlags)
    chat: ChatConfig = field(default_factory=ChatConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    memory_dir: Path = _DEFAULT_MEMORY_DIR
    retention_days: int = 30
    assistant_name: str = "Assistant"
    pid_file: Path = _DEFAULT_HOME / "memoire.pid"
    log_level: str = "INFO"


def load_config(config_path: Path | None = None) -> MemoireConfig:
    """Load configuration from environment variables and optional memoire.toml.

    Priority: environment variables > memoire.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        for candidate in [Path.cwd() / _CONFIG_FILENAME, _DEFAULT_HOME / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    features_data = file_data.get("features", {})
    chat_data = file_data.get("chat", {})
    embedding_data = file_data.get("embedding", {})
    scheduler_data = file_data.get("scheduler", {})

    config = MemoireConfig(
        features=FeatureFlags(
            semantic_memory=_flag(
                "MEMOIRE_SEMANTIC_MEMORY", features_data.get("semantic_memory")
            ),
            auto_memory_extraction=_flag(
                "MEMOIRE_AUTO_EXTRACTION", features_data.get("auto_memory_extraction")
            ),
            conversation_summaries=_flag(
                "MEMOIRE_SUMMARIES", features_data.get("conversation_summaries")
            ),
        ),
        chat=ChatConfig(
            model=os.getenv("MEMOIRE_CHAT_MODEL", chat_data.get("model", ChatConfig.model)),
            max_tokens=int(chat_data.get("max_tokens", 1024)),
            timeout=int(chat_data.get("timeout", 120)),
        ),
        embedding=EmbeddingConfig(
            model=os.getenv(
                "MEMOIRE_EMBEDDING_MODEL", embedding_data.get("model", EmbeddingConfig.model)
            ),
            dimension=int(embedding_data.get("dimension", 1536)),
        ),
        scheduler=SchedulerConfig(
            rotation_cron=scheduler_data.get("rotation_cron", "0 3 * * *"),
            tick_interval=int(
                os.getenv("MEMOIRE_TICK", scheduler_data.get("tick_interval", 300))
            ),
        ),
        memory_dir=Path(
            os.getenv("MEMOIRE_MEMORY_DIR", file_data.get("memory_dir", str(_DEFAULT_MEMORY_DIR)))
        ).expanduser(),
        retention_days=int(
            os.getenv("MEMOIRE_RETENTION_DAYS", file_data.get("retention_days", 30))
        ),
        assistant_name=os.getenv(
            "MEMOIRE_ASSISTANT_NAME", file_data.get("assistant_name", "Assistant")
        ),
        pid_file=Path(file_data.get("pid_file", str(_DEFAULT_HOME / "memoire.pid"))).expanduser(),
        log_level=os.getenv("MEMOIRE_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config
