"""Constants used in the project."""

import os
from enum import Enum


class LocationKind(Enum):
    """Source kinds a package can be fetched from.

    Args:
        Enum (string): Tag stored in lockfiles and used for dispatch.
    """

    PATH = "path"
    GIT = "git"
    INDEX = "index"
    API = "api"


class GitProtocol(Enum):
    """Protocols supported by the GitHub shorthand location."""

    GIT = "git"
    SSH = "ssh"
    HTTPS = "https"


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration defaults; not intended to provide behavior.
    """

    DEFAULT_STORE_PATH = os.path.join("~", ".larder")
    ENV_STORE_PATH = "LARDER_PATH"
    ENV_LOG_LEVEL = "LARDER_LOG_LEVEL"
    ENV_INDEX_URL = "LARDER_INDEX_URL"
    ENV_API_TOKEN = "LARDER_API_TOKEN"

    CONFIG_FILE = "config.yml"
    DESCRIPTOR_FILE = "metadata.json"
    LOCKFILE_NAME = "Larderfile.lock"
    LOCKFILE_FORMAT_VERSION = 1
    ORIGIN_FILE = ".larder-origin.json"

    PACKAGES_DIR = "packages"
    TMP_DIR = "tmp"
    LOCKS_DIR = "locks"

    DEFAULT_INDEX_URL = "https://supermarket.chef.io/api/v1"
    GITHUB_HOST = "github.com"
    DEFAULT_GROUP = "default"

    LOG_FORMAT = "[%(levelname)s] %(message)s"
    REQUEST_TIMEOUT = 30  # Timeout in seconds for all HTTP requests
    GIT_TIMEOUT = 300  # Timeout in seconds for each git subprocess
    DOWNLOAD_CHUNK_SIZE = 64 * 1024
    DEFAULT_WORKERS = 4
    USER_AGENT = "larder/0.4.0"

    # Directories skipped when checksumming, validating or vendoring packages
    IGNORED_DIRS = (".git",)
