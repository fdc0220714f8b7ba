# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Configuration management for Claude Langfuse Monitor.

Loads configuration from a YAML (or legacy JSON) file and environment variables.
Provides typed configuration classes with validation.
"""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, field


DEFAULT_CONFIG_DIR = Path.home() / ".claude-langfuse"
DEFAULT_LANGFUSE_HOST = "http://localhost:3001"
DEFAULT_MODEL = "claude-sonnet-4-5-20250929"


class ConfigurationError(Exception):
    """Raised when the monitor cannot start because of its environment or settings."""


# =============================================================================
# Configuration Data Classes
# =============================================================================

@dataclass
class PathsConfig:
    """Conversation log locations."""
    claude_projects_dir: str = "~/.claude/projects"
    anchor_segment: str = "projects"
    file_pattern: str = "*.jsonl"

    def __post_init__(self):
        """Expand paths."""
        self.claude_projects_dir = str(Path(self.claude_projects_dir).expanduser())


@dataclass
class LangfuseConfig:
    """Langfuse connection and record identity."""
    host: str = DEFAULT_LANGFUSE_HOST
    public_key: str = ""
    secret_key: str = ""
    user_id: str = "claude-code"
    default_model: str = DEFAULT_MODEL

    def has_credentials(self) -> bool:
        return bool(self.public_key and self.secret_key)


@dataclass
class MonitorOptions:
    """Runtime behaviour of the monitor."""
    history_hours: float = 24
    quiet: bool = False
    dry_run: bool = False
    emit_initial_events: bool = True
    debounce_seconds: float = 0.5
    flush_every: int = 10
    flush_retries: int = 3
    flush_backoff_seconds: float = 1.0


@dataclass
class CacheConfig:
    """Capacity of the run-lifetime caches (least recently used entries are evicted)."""
    max_processed_messages: int = 200_000
    max_sessions: int = 50_000


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"


# =============================================================================
# Main Configuration Class
# =============================================================================

@dataclass
class MonitorConfig:
    """
    Main configuration class for Claude Langfuse Monitor.

    Aggregates all configuration sections and provides methods for
    loading from configuration files and environment variables.
    """
    paths: PathsConfig = field(default_factory=PathsConfig)
    langfuse: LangfuseConfig = field(default_factory=LangfuseConfig)
    monitor: MonitorOptions = field(default_factory=MonitorOptions)
    cache: CacheConfig = field(default_factory=CacheConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    source_file: Optional[str] = None

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> 'MonitorConfig':
        """
        Load configuration from file with environment variable overrides.

        Args:
            config_path: Path to a configuration file or directory.
                        If None, searches ~/.claude-langfuse.

        Returns:
            MonitorConfig instance
        """
        config_file = cls._find_config_file(config_path)

        if config_file and config_file.exists():
            with open(config_file, 'r') as f:
                config_data = yaml.safe_load(f) or {}
            if not isinstance(config_data, dict):
                raise ConfigurationError(f"Configuration file must contain a mapping: {config_file}")
        else:
            config_data = {}

        config_data = cls._normalize_legacy_layout(config_data)
        config_data = cls._apply_env_overrides(config_data)

        config = cls._from_dict(config_data)
        config.source_file = str(config_file) if config_file and config_file.exists() else None
        return config

    @classmethod
    def _find_config_file(cls, config_path: Optional[Path]) -> Optional[Path]:
        """Find the configuration file in standard locations."""
        if config_path is not None:
            config_path = Path(config_path).expanduser()
            if config_path.is_dir():
                candidates = [config_path / "config.yaml", config_path / "config.json"]
            else:
                return config_path
        else:
            candidates = [DEFAULT_CONFIG_DIR / "config.yaml", DEFAULT_CONFIG_DIR / "config.json"]

        for candidate in candidates:
            if candidate.exists():
                return candidate
        return None

    @classmethod
    def _normalize_legacy_layout(cls, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Map the flat {host, publicKey, secretKey} layout onto the langfuse section."""
        legacy_keys = {'host': 'host', 'publicKey': 'public_key', 'secretKey': 'secret_key'}
        if not any(key in config_data for key in legacy_keys):
            return config_data

        langfuse = dict(config_data.get('langfuse') or {})
        for legacy, key in legacy_keys.items():
            if legacy in config_data:
                langfuse.setdefault(key, config_data.pop(legacy))
        config_data['langfuse'] = langfuse
        return config_data

    @classmethod
    def _apply_env_overrides(cls, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration."""
        # Langfuse
        if 'langfuse' not in config_data:
            config_data['langfuse'] = {}

        config_data['langfuse']['host'] = os.getenv(
            'LANGFUSE_HOST',
            config_data['langfuse'].get('host', DEFAULT_LANGFUSE_HOST)
        )
        config_data['langfuse']['public_key'] = os.getenv(
            'LANGFUSE_PUBLIC_KEY',
            config_data['langfuse'].get('public_key', '')
        )
        config_data['langfuse']['secret_key'] = os.getenv(
            'LANGFUSE_SECRET_KEY',
            config_data['langfuse'].get('secret_key', '')
        )
        config_data['langfuse']['user_id'] = os.getenv(
            'CLAUDE_LANGFUSE_USER_ID',
            config_data['langfuse'].get('user_id', 'claude-code')
        )

        # Paths
        if 'paths' not in config_data:
            config_data['paths'] = {}

        config_data['paths']['claude_projects_dir'] = os.getenv(
            'CLAUDE_PROJECTS_DIR',
            config_data['paths'].get('claude_projects_dir', '~/.claude/projects')
        )

        # Logging
        if 'logging' not in config_data:
            config_data['logging'] = {}

        config_data['logging']['level'] = os.getenv(
            'LOG_LEVEL',
            config_data['logging'].get('level', 'INFO')
        )

        return config_data

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> 'MonitorConfig':
        """Create MonitorConfig from dictionary."""
        try:
            return cls(
                paths=PathsConfig(**data.get('paths', {})),
                langfuse=LangfuseConfig(**data.get('langfuse', {})),
                monitor=MonitorOptions(**data.get('monitor', {})),
                cache=CacheConfig(**data.get('cache', {})),
                logging=LoggingConfig(**data.get('logging', {})),
            )
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    def get_projects_dir(self) -> Path:
        """
        Return the Claude projects directory.

        Raises:
            ConfigurationError: If the directory does not exist
        """
        projects_dir = Path(self.paths.claude_projects_dir)
        if not projects_dir.is_dir():
            raise ConfigurationError(f"Claude projects directory not found: {projects_dir}")
        return projects_dir


# =============================================================================
# Convenience Functions
# =============================================================================

def load_config(config_path: Optional[Path] = None) -> MonitorConfig:
    """
    Load monitor configuration.

    Args:
        config_path: Path to configuration file or directory

    Returns:
        MonitorConfig instance
    """
    env_path = os.getenv('CLAUDE_LANGFUSE_CONFIG')
    if config_path is None and env_path:
        config_path = Path(env_path)
    return MonitorConfig.load(config_path)
