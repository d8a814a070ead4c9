"""Runtime configuration: defaults, ``config.yml`` under the store root, environment.

Precedence, highest first:

1. Environment variables (``LARDER_PATH``, ``LARDER_INDEX_URL``,
   ``LARDER_API_TOKEN``)
2. ``<store root>/config.yml``
3. ``Constants`` defaults

Example ``config.yml``::

    index_url: https://supermarket.chef.io/api/v1
    api:
      endpoint: https://packages.example.com
      client_name: ci
      token: s3cr3t
    github:
      protocol: https
    workers: 8
    http_timeout: 30
    git_timeout: 300
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml

from larder.constants import Constants, GitProtocol
from larder.errors import ConfigurationError
from larder.locations.specs import ApiCredentials, ApiSpec, IndexSpec

logger = logging.getLogger(__name__)


def default_store_path(env: Optional[Mapping[str, str]] = None) -> Path:
    """Store root from ``LARDER_PATH``, falling back to ``~/.larder``."""
    env = os.environ if env is None else env
    raw = env.get(Constants.ENV_STORE_PATH) or Constants.DEFAULT_STORE_PATH
    return Path(raw).expanduser()


@dataclass
class Config:
    """Settings passed explicitly to the installer, downloader and locations."""

    store_path: Path = field(default_factory=default_store_path)
    index_url: str = Constants.DEFAULT_INDEX_URL
    api_endpoint: Optional[str] = None
    api_client_name: Optional[str] = None
    api_token: Optional[str] = field(default=None, repr=False)
    github_protocol: GitProtocol = GitProtocol.GIT
    workers: int = Constants.DEFAULT_WORKERS
    http_timeout: float = Constants.REQUEST_TIMEOUT
    git_timeout: float = Constants.GIT_TIMEOUT

    def __post_init__(self) -> None:
        self.store_path = Path(self.store_path).expanduser()
        if not isinstance(self.workers, int) or isinstance(self.workers, bool) or self.workers < 1:
            raise ConfigurationError(f"workers must be a positive integer, got {self.workers!r}")
        for key in ("http_timeout", "git_timeout"):
            value = getattr(self, key)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ConfigurationError(f"{key} must be a positive number of seconds, got {value!r}")
        if not isinstance(self.github_protocol, GitProtocol):
            try:
                self.github_protocol = GitProtocol(self.github_protocol)
            except ValueError as exc:
                raise ConfigurationError(
                    f"'{self.github_protocol}' is not a supported Git protocol.",
                    hint="Use one of: git, ssh, https.",
                ) from exc

    @classmethod
    def load(cls, store_path: Optional[Union[str, Path]] = None,
             env: Optional[Mapping[str, str]] = None) -> "Config":
        """Build a Config from ``config.yml`` and the environment.

        Args:
            store_path: Store root; defaults to ``LARDER_PATH`` or ``~/.larder``.
            env: Environment mapping, ``os.environ`` when omitted.

        Returns:
            Config: The merged configuration.

        Raises:
            ConfigurationError: If the file is unreadable or a value is invalid.
        """
        env = os.environ if env is None else env
        root = Path(store_path).expanduser() if store_path else default_store_path(env)
        data = load_config_file(root / Constants.CONFIG_FILE)

        api = _section(data, "api")
        github = _section(data, "github")
        values: Dict[str, Any] = {
            "store_path": root,
            "index_url": data.get("index_url", Constants.DEFAULT_INDEX_URL),
            "api_endpoint": api.get("endpoint"),
            "api_client_name": api.get("client_name"),
            "api_token": api.get("token"),
            "github_protocol": github.get("protocol", GitProtocol.GIT.value),
            "workers": data.get("workers", Constants.DEFAULT_WORKERS),
            "http_timeout": data.get("http_timeout", Constants.REQUEST_TIMEOUT),
            "git_timeout": data.get("git_timeout", Constants.GIT_TIMEOUT),
        }
        if env.get(Constants.ENV_INDEX_URL):
            values["index_url"] = env[Constants.ENV_INDEX_URL]
        if env.get(Constants.ENV_API_TOKEN):
            values["api_token"] = env[Constants.ENV_API_TOKEN].strip()
        return cls(**values)

    def index_spec(self) -> IndexSpec:
        return IndexSpec(self.index_url)

    def api_spec(self) -> Optional[ApiSpec]:
        """The configured private API, or None when no endpoint is set."""
        if not self.api_endpoint:
            return None
        return ApiSpec(self.api_endpoint, credentials=self.api_credentials())

    def api_credentials(self) -> Optional[ApiCredentials]:
        if self.api_client_name and self.api_token:
            return ApiCredentials(self.api_client_name, self.api_token)
        return None


def load_config_file(path: Path) -> Dict[str, Any]:
    """Read a YAML mapping; a missing file yields an empty mapping."""
    if not path.is_file():
        logger.debug("No config file at %s", path)
        return {}
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Unable to read {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a mapping at top level.")
    return data


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"`{key}` in {Constants.CONFIG_FILE} must be a mapping.")
    return value
