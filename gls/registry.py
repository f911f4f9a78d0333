# gls/registry.py
"""
Instance Registry: the name -> (url, token) mapping persisted as JSON.

File format (compatible with earlier releases of the tool):

    {
      "gitlab_instances": [
        {"name": "work", "url": "https://gitlab.example.com", "token": "..."}
      ]
    }
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from gls.exceptions import InstanceNotFoundError, NoInstancesConfiguredError, RegistryFileError

CONFIG_ENV_VAR = "GITLAB_SEARCH_CONFIG"
CONFIG_DIR_NAME = "gitlab-search-cli"
CONFIG_FILE_NAME = "config.json"


@dataclass(frozen=True, slots=True)
class Instance:
    name: str
    url: str
    token: str

    @property
    def api_url(self) -> str:
        return self.url.rstrip("/")


@dataclass(slots=True)
class Registry:
    """Ordered collection of configured instances; the first one is the default."""
    instances: list[Instance] = field(default_factory=list)

    def get(self, name: str) -> Instance:
        for inst in self.instances:
            if inst.name == name:
                return inst
        raise InstanceNotFoundError(name)

    def select(self, name: str | None = None) -> Instance:
        """
        Pick the instance a command should talk to.

        Args:
            name: Instance name, or None for the first configured instance.

        Raises:
            InstanceNotFoundError: `name` is not configured.
            NoInstancesConfiguredError: No name given and the registry is empty.
        """
        if name is not None:
            return self.get(name)
        if not self.instances:
            raise NoInstancesConfiguredError()
        return self.instances[0]

    def upsert(self, instance: Instance) -> bool:
        """Add or replace an instance by name. Returns True if it was added."""
        for i, inst in enumerate(self.instances):
            if inst.name == instance.name:
                self.instances[i] = instance
                return False
        self.instances.append(instance)
        return True


def default_config_path() -> Path:
    """Resolve the registry file location ($GITLAB_SEARCH_CONFIG, then XDG config dir)."""
    env = os.environ.get(CONFIG_ENV_VAR)
    if env:
        return Path(env).expanduser()
    base = os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config"
    return Path(base).expanduser() / CONFIG_DIR_NAME / CONFIG_FILE_NAME


def _parse_instance(rec: Any, path: Path) -> Instance:
    if not isinstance(rec, dict):
        raise RegistryFileError(f"Malformed instance entry in '{path}': {rec!r}")
    try:
        return Instance(name=str(rec["name"]), url=str(rec["url"]), token=str(rec["token"]))
    except KeyError as e:
        raise RegistryFileError(f"Instance entry in '{path}' is missing field {e}") from e


def load_registry(path: Path | None = None) -> Registry:
    """
    Read the registry file, creating an empty one first if it does not exist.

    Raises:
        RegistryFileError: The file is unreadable or not a valid registry.
    """
    path = path or default_config_path()

    if not path.exists():
        save_registry(Registry(), path)

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise RegistryFileError(f"Can't read config file '{path}': {e}") from e

    if not isinstance(data, dict):
        raise RegistryFileError(f"Config file '{path}' must contain a JSON object.")

    raw = data.get("gitlab_instances") or []
    if not isinstance(raw, list):
        raise RegistryFileError(f"'gitlab_instances' in '{path}' must be a list.")

    return Registry(instances=[_parse_instance(rec, path) for rec in raw])


def save_registry(registry: Registry, path: Path | None = None) -> Path:
    """Rewrite the registry file wholesale."""
    path = path or default_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    payload = {
        "gitlab_instances": [
            {"name": i.name, "url": i.url, "token": i.token} for i in registry.instances
        ]
    }

    tmp = path.with_name(f"{path.name}.tmp")
    try:
        tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
        # The file holds API tokens.
        os.chmod(tmp, 0o600)
        os.replace(tmp, path)
    except OSError as e:
        raise RegistryFileError(f"Failed to write config file '{path}': {e}") from e
    return path
