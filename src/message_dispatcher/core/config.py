# Copyright 2026 Firefly Software Solutions Inc.
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
"""Layered configuration: packaged defaults, YAML/TOML files, profiles, env vars.

Values are addressed with dot-notation keys (``message.dispatcher.host``).
Sections are bound into pydantic models marked with :func:`config_properties`.
"""

from __future__ import annotations

import importlib.resources
import os
import re
import tomllib
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any, TypeVar, cast

import yaml  # type: ignore[import-untyped]
from pydantic import BaseModel, ValidationError

T = TypeVar("T")

_PLACEHOLDER_RE = re.compile(r"\$\{([^}]+)\}")
_MAX_PLACEHOLDER_DEPTH = 10
_MISSING = object()

_CONFIG_PROPERTIES_ATTR = "__message_dispatcher_config_prefix__"

CONFIG_FILE_STEM = "message-dispatcher"
DEFAULTS_FILE = "message-dispatcher-defaults.yaml"
_EXTENSIONS = (".yaml", ".toml")


def config_properties(prefix: str) -> Callable[[type[T]], type[T]]:
    """Mark a pydantic model as bindable to a configuration prefix.

    Usage:
        @config_properties(prefix="message.dispatcher")
        class MessageDispatcherProperties(BaseModel):
            host: str = "localhost"
            port: int = Field(default=5672, ge=1, le=65535)
    """

    def decorator(cls: type[T]) -> type[T]:
        setattr(cls, _CONFIG_PROPERTIES_ATTR, prefix)
        return cls

    return decorator


def _lookup(data: dict[str, Any], key: str) -> Any:
    """Follow a dot-notation key through nested dicts; ``_MISSING`` when absent."""
    current: Any = data
    for part in key.split("."):
        if not isinstance(current, dict) or current.get(part) is None:
            return _MISSING
        current = current[part]
    return current


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(merged.get(key), dict) and isinstance(value, dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _read(path: Path) -> dict[str, Any]:
    if path.suffix == ".toml":
        with open(path, "rb") as f:
            return tomllib.load(f) or {}
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _read_defaults() -> dict[str, Any]:
    resource = importlib.resources.files("message_dispatcher.resources").joinpath(DEFAULTS_FILE)
    with importlib.resources.as_file(resource) as p:
        return _read(p)


def _config_files(base_dir: Path, profiles: list[str]) -> Iterator[tuple[Path, str | None]]:
    """Candidate files in merge order: base files first, then one overlay per profile."""
    search_dirs = (base_dir / "config", base_dir)
    for stem, profile in [(CONFIG_FILE_STEM, None), *((f"{CONFIG_FILE_STEM}-{p}", p) for p in profiles)]:
        for directory in search_dirs:
            for ext in _EXTENSIONS:
                candidate = directory / f"{stem}{ext}"
                if candidate.is_file():
                    yield candidate, profile


class Config:
    """Hierarchical configuration with dot-notation access and env var overrides.

    Priority (highest wins):
    1. Environment variables (MESSAGE_DISPATCHER_SECTION_KEY format)
    2. Profile overlays (message-dispatcher-{profile}.yaml)
    3. message-dispatcher.yaml / .toml, in config/ then the project root
    4. Packaged defaults
    """

    def __init__(self, data: dict[str, Any] | None = None, sources: list[str] | None = None) -> None:
        self._data: dict[str, Any] = data or {}
        self._loaded_sources: list[str] = list(sources or [])

    @property
    def loaded_sources(self) -> list[str]:
        """Config sources that were merged, in merge order."""
        return list(self._loaded_sources)

    def to_dict(self) -> dict[str, Any]:
        return dict(self._data)

    # ── loading ────────────────────────────────────────────────

    @classmethod
    def from_sources(
        cls,
        base_dir: str | Path,
        active_profiles: list[str] | None = None,
        load_defaults: bool = True,
    ) -> Config:
        """Merge the packaged defaults, config files and profile overlays under ``base_dir``."""
        data: dict[str, Any] = _read_defaults() if load_defaults else {}
        sources = [f"{DEFAULTS_FILE} (defaults)"] if load_defaults else []

        for path, profile in _config_files(Path(base_dir), active_profiles or []):
            data = _merge(data, _read(path))
            sources.append(str(path) if profile is None else f"{path} (profile: {profile})")

        return cls(data, sources)

    @classmethod
    def defaults(cls) -> Config:
        """Configuration holding only the packaged defaults."""
        return cls(_read_defaults(), [f"{DEFAULTS_FILE} (defaults)"])

    def with_overrides(self, overrides: dict[str, Any]) -> Config:
        """New Config with ``overrides`` deep-merged over this one."""
        return Config(_merge(self._data, overrides), [*self._loaded_sources, "overrides"])

    # ── access ─────────────────────────────────────────────────

    @staticmethod
    def env_key(key: str) -> str:
        """Environment variable name overriding a dot-notation key.

        message.dispatcher.reply-timeout -> MESSAGE_DISPATCHER_REPLY_TIMEOUT
        """
        return key.upper().replace(".", "_").replace("-", "_")

    def get(self, key: str, default: Any = None) -> Any:
        """Value for ``key``; the matching env var wins over file values.

        String values may hold ``${ENV_VAR}``, ``${config.key}`` or
        ``${key:default}`` placeholders.
        """
        env_val = os.environ.get(self.env_key(key))
        if env_val is not None:
            return env_val
        value = _lookup(self._data, key)
        if value is _MISSING:
            return default
        if isinstance(value, str) and "${" in value:
            return self._resolve_placeholders(value)
        return value

    def _resolve_placeholders(self, value: str, depth: int = 0) -> str:
        if depth > _MAX_PLACEHOLDER_DEPTH:
            raise ValueError(f"Circular placeholder reference detected while resolving: {value}")

        def _replace(match: re.Match[str]) -> str:
            ref, sep, fallback = match.group(1).partition(":")
            env_val = os.environ.get(ref)
            if env_val is not None:
                return env_val
            found = _lookup(self._data, ref)
            if found is not _MISSING:
                text = str(found)
                return self._resolve_placeholders(text, depth + 1) if "${" in text else text
            if sep:
                return fallback
            raise ValueError(f"Cannot resolve placeholder '${{{match.group(1)}}}': not found in environment or config")

        return _PLACEHOLDER_RE.sub(_replace, value)

    def get_section(self, prefix: str) -> dict[str, Any]:
        section = _lookup(self._data, prefix)
        return section if isinstance(section, dict) else {}

    def resolved_section(self, prefix: str) -> dict[str, Any]:
        """Like get_section(), with env overrides and placeholders applied to every leaf."""

        def _walk(section: dict[str, Any], path: str) -> dict[str, Any]:
            return {
                key: _walk(value, f"{path}.{key}") if isinstance(value, dict) else self.get(f"{path}.{key}", value)
                for key, value in section.items()
            }

        return _walk(self.get_section(prefix), prefix)

    def bind(self, model: type[T]) -> T:
        """Validate the ``@config_properties`` section of ``model`` into an instance."""
        prefix = getattr(model, _CONFIG_PROPERTIES_ATTR, None)
        if prefix is None or not issubclass(model, BaseModel):
            raise ValueError(f"{model.__name__} is not a pydantic model decorated with @config_properties")
        try:
            return cast(T, model.model_validate(self.resolved_section(prefix)))
        except ValidationError as exc:
            raise ValueError(
                f"Configuration validation failed for '{model.__name__}' (prefix='{prefix}'):\n{exc}"
            ) from exc
