"""Constants used in the project."""

import os


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    DEFAULT_SOURCE = "https://pwsh.gallery/index.json"
    REGISTRATION_TYPES = [
        "RegistrationsBaseUrl/3.6.0",
        "RegistrationsBaseUrl/3.4.0",
        "RegistrationsBaseUrl",
    ]
    LOG_FORMAT = "[%(levelname)s] %(message)s"
    REQUEST_TIMEOUT = 30  # Timeout in seconds for all HTTP requests
    CONNECTION_LIMIT = 100
    USER_AGENT = "ModuleFast/1.0"

    # Resolver tunables
    POLL_INTERVAL_SEC = 0.5

    # Installer tunables
    MAX_CONCURRENT_DOWNLOADS = 16
    MAX_EXTRACT_WORKERS = os.cpu_count() or 1
    DOWNLOAD_CHUNK_SIZE = 64 * 1024
    INCOMPLETE_MARKER = ".incomplete"
    MANIFEST_EXTENSION = ".psd1"
    PACKAGING_ARTIFACTS = ["_rels", "package", "[Content_Types].xml"]

    # Legacy version encoding tags
    LEGACY_TAG = "SYSVERSION"
    LEGACY_MISSING_BUILD = "MISSINGBUILD"
    LEGACY_HAS_REVISION = "HASREVISION"
    LEGACY_REVISION_PREFIX = "SYSREV"
    LEGACY_REVISION_WIDTH = 10

    # Environment
    ENV_CONFIG = "MODULEFAST_CONFIG"
    ENV_LOG_LEVEL = "MODULEFAST_LOG_LEVEL"
    ENV_PREFIX = "MODULEFAST_"
