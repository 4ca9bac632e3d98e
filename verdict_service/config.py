# Copyright 2025 Verdict Service Contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Verdict Service Configuration

Configuration is taken from explicit keyword arguments first, then from
``VERDICT_*`` environment variables, and can also be loaded from a JSON or
YAML file.
"""

import os
from dataclasses import dataclass, fields
from typing import Any

from .errors import ConfigurationMissing

ENV_PREFIX = "VERDICT_"

# Options a process must have before it may start, per role
COMMITTER_REQUIRED = ("rpc_url", "signing_key", "commitment_contract_address")
AGENT_REQUIRED = ("signing_key", "generator_api_key")

JOB_STORE_BACKENDS = ("memory", "file", "redis")


@dataclass
class VerdictServiceConfig:
    """Configuration for the verdict service processes."""

    # Chain
    rpc_url: str | None = None
    signing_key: str | None = None
    commitment_contract_address: str | None = None
    reveal_delay_blocks: int = 5
    rpc_timeout: float = 30.0
    receipt_timeout: float = 120.0
    event_poll_interval: float = 2.0

    # Correlation / lifecycle
    correlation_max_size: int = 1000
    attach_retry_interval: float = 5.0
    shutdown_grace_period: float = 10.0

    # Answering agent
    poll_interval: float = 15.0
    max_concurrent_jobs: int = 4

    # Job store
    job_store_backend: str = "memory"  # memory, file, redis
    job_store_path: str = "./.verdict-store"
    redis_url: str = "redis://localhost:6379/0"

    # Content and generation
    content_gateway_url: str = "https://w3s.link/ipfs/"
    content_timeout: float = 25.0
    generator_url: str = "https://openrouter.ai/api/v1/chat/completions"
    generator_api_key: str | None = None
    generator_model: str = "mistralai/mistral-7b-instruct"
    generator_timeout: float = 90.0

    # Logging
    log_level: str = "INFO"

    def __post_init__(self):
        """Post-initialization validation and environment variable loading."""
        self._load_from_environment()
        self._validate_config()

    def _load_from_environment(self):
        """Fill unset fields from ``VERDICT_<FIELD>`` environment variables."""
        defaults = {f.name: f.default for f in fields(self)}
        for f in fields(self):
            raw = os.getenv(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            current = getattr(self, f.name)
            # Explicit constructor arguments win over the environment
            if current is not None and current != defaults[f.name]:
                continue
            setattr(self, f.name, _coerce(f.name, raw, defaults[f.name]))

    def _validate_config(self):
        """Validate configuration values."""
        if self.reveal_delay_blocks <= 0:
            raise ConfigurationMissing("Reveal delay must be a positive number of blocks.")

        if self.correlation_max_size <= 0:
            raise ConfigurationMissing("Correlation table size must be positive.")

        for name in ("rpc_timeout", "receipt_timeout", "event_poll_interval", "poll_interval"):
            if getattr(self, name) <= 0:
                raise ConfigurationMissing(f"{name} must be positive.")

        if self.shutdown_grace_period < 0:
            raise ConfigurationMissing("Shutdown grace period must be non-negative.")

        if self.max_concurrent_jobs < 1:
            raise ConfigurationMissing("max_concurrent_jobs must be at least 1.")

        if self.job_store_backend not in JOB_STORE_BACKENDS:
            raise ConfigurationMissing(f"Job store backend must be one of: {', '.join(JOB_STORE_BACKENDS)}")

    def missing(self, *names: str) -> list[str]:
        return [name for name in names if not getattr(self, name)]

    def require(self, *names: str) -> None:
        """Raise ConfigurationMissing unless every named option is set."""
        missing = self.missing(*names)
        if missing:
            env_names = ", ".join(ENV_PREFIX + name.upper() for name in missing)
            raise ConfigurationMissing(f"Missing required configuration: {env_names}", missing=missing)

    @classmethod
    def from_file(cls, config_file: str) -> "VerdictServiceConfig":
        """Load configuration from a file."""
        import json

        import yaml

        try:
            with open(config_file) as f:
                if config_file.endswith(".json"):
                    config_data = json.load(f)
                elif config_file.endswith((".yml", ".yaml")):
                    config_data = yaml.safe_load(f) or {}
                else:
                    raise ConfigurationMissing(f"Unsupported config file format: {config_file}")

            return cls(**config_data)

        except FileNotFoundError:
            raise ConfigurationMissing(f"Configuration file not found: {config_file}")
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise ConfigurationMissing(f"Invalid configuration file format: {e}")
        except TypeError as e:
            raise ConfigurationMissing(f"Unknown configuration parameter in {config_file}: {e}")

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary with secrets masked."""
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        for secret in ("signing_key", "generator_api_key"):
            data[secret] = "***" if data[secret] else None
        return data

    def update(self, **kwargs):
        """Update configuration with new values."""
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)
            else:
                raise ConfigurationMissing(f"Unknown configuration parameter: {key}")

        self._validate_config()


def _coerce(name: str, raw: str, default: Any) -> Any:
    if isinstance(default, bool):
        return raw.lower() in ("true", "1", "yes")
    try:
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, float):
            return float(raw)
    except ValueError:
        raise ConfigurationMissing(f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r}")
    return raw
