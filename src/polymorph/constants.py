"""
Constants and configuration values for polymorph.

This module contains the cache layout names, file modes, network defaults and
logging settings used throughout the application.
"""

# Cache layout: <user cache dir>/polymorph/<template name>/<expanded directory>
CACHE_NAMESPACE = "polymorph"
TEMP_DIR_PREFIX = ".tmp-"

# File modes
EXECUTABLE_PERMISSIONS = 0o755

# Download settings
DEFAULT_CONNECT_RETRIES = 0
DEFAULT_BACKOFF_FACTOR = 0.3
DEFAULT_CONNECT_TIMEOUT = 30  # seconds; reads are never timed out
DEFAULT_CHUNK_SIZE = 8192
DEFAULT_TARBALL_COMPRESSION = "gz"

# Template files
YAML_EXTENSIONS = (".yaml", ".yml")
TEMPLATE_KEYS = ("name", "directory", "params", "executables", "tarball", "binary")

# Logging configuration
LOGGER_NAME = "polymorph"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
INFO_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
DEBUG_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s: %(message)s"
LOG_FILE_NAME = "polymorph.log"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
LOG_FILE_BACKUP_COUNT = 5

# Environment variable names
CACHE_DIR_ENV_VAR = "POLYMORPH_CACHE_DIR"
LOG_LEVEL_ENV_VAR = "POLYMORPH_LOG_LEVEL"
LOG_DIR_ENV_VAR = "POLYMORPH_LOG_DIR"
HTTP_RETRIES_ENV_VAR = "POLYMORPH_HTTP_RETRIES"
