"""Configuration and API key management for profilestream.

Settings live in a YAML file in the platform config directory and are
validated with Pydantic. The Gemini API key is kept out of that file and
stored in one of three backends: an environment variable, the OS keyring,
or a Fernet-encrypted file.

Security notes:
- API keys are never logged or printed
- Encrypted file backend uses a machine-derived Fernet key
"""

from __future__ import annotations

import base64
import hashlib
import logging
import os
import platform
import secrets
from enum import Enum
from pathlib import Path

import yaml
from cryptography.fernet import Fernet, InvalidToken
from pydantic import BaseModel, Field, ValidationError

from profilestream.models import TOTAL_CHUNKS

logger = logging.getLogger(__name__)

APP_DIR_NAME = "profilestream"


# =============================================================================
# Exceptions
# =============================================================================


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


class APIKeyNotFoundError(Exception):
    """Raised when API key is not configured or cannot be retrieved."""

    pass


# =============================================================================
# Enums
# =============================================================================


class KeyStorageBackend(str, Enum):
    """Backend options for storing the API key.

    Attributes:
        ENV: Environment variable (GEMINI_API_KEY)
        KEYRING: System keyring (OS credential manager)
        ENCRYPTED_FILE: Fernet-encrypted local file
    """

    ENV = "env"
    KEYRING = "keyring"
    ENCRYPTED_FILE = "encrypted_file"


# =============================================================================
# Configuration Models
# =============================================================================


class AISettings(BaseModel):
    """Gemini client settings.

    Per-chunk output budgets and timeouts are fixed by the analyzer; these
    values apply to every request it makes.

    Attributes:
        model_name: Gemini model to use
        temperature: Sampling temperature (0.0-2.0)
        max_retries: Retry attempts for transient failures
        retry_base_delay: First backoff delay in seconds, doubled per attempt
        timeout_multiplier: Scales every per-chunk timeout (slow networks)
    """

    model_name: str = "gemini-2.0-flash"
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_retries: int = Field(default=2, ge=0, le=10)
    retry_base_delay: float = Field(default=1.0, ge=0.0, le=60.0)
    timeout_multiplier: float = Field(default=1.0, ge=0.1, le=10.0)


class StreamingSettings(BaseModel):
    """Chunking and frame capture settings for a run.

    Attributes:
        chunk_size: Frames per chunk
        thumbnail_upgrade_threshold: Score points a later frame must beat the
            current thumbnail by before it replaces it
        frame_max_dimension: Longest side of a captured frame in pixels
        jpeg_quality: ffmpeg ``-q:v`` value (2 is best, 31 is worst)
        frame_timeout_seconds: Limit for capturing a single frame
    """

    chunk_size: int = Field(default=4, ge=1, le=8)
    thumbnail_upgrade_threshold: float = Field(default=15.0, ge=0.0, le=100.0)
    frame_max_dimension: int = Field(default=1024, ge=64, le=4096)
    jpeg_quality: int = Field(default=4, ge=2, le=31)
    frame_timeout_seconds: float = Field(default=15.0, ge=1.0, le=120.0)

    @property
    def total_chunks(self) -> int:
        return TOTAL_CHUNKS

    @property
    def total_frames(self) -> int:
        return self.chunk_size * self.total_chunks


class StorageSettings(BaseModel):
    """Local record store settings.

    Attributes:
        data_dir: Directory for stored records; the platform data directory
            when unset
    """

    data_dir: Path | None = None

    def resolve_data_dir(self) -> Path:
        return self.data_dir or get_app_data_dir()


class AppConfig(BaseModel):
    """Main application configuration.

    Attributes:
        ai: Gemini settings
        streaming: Chunking and frame capture settings
        storage: Record store settings
        key_storage_backend: How the API key is stored
        encrypted_key_file_path: Path to encrypted key file (for that backend)
    """

    ai: AISettings = Field(default_factory=AISettings)
    streaming: StreamingSettings = Field(default_factory=StreamingSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    key_storage_backend: KeyStorageBackend = KeyStorageBackend.ENV
    encrypted_key_file_path: Path | None = None

    @classmethod
    def get_default_config_path(cls) -> Path:
        """Get the platform-appropriate default configuration path.

        Returns:
            - Windows: %APPDATA%/profilestream/config.yaml
            - macOS: ~/Library/Application Support/profilestream/config.yaml
            - Linux: ~/.config/profilestream/config.yaml
        """
        system = platform.system()

        if system == "Windows":
            base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
        elif system == "Darwin":
            base = Path.home() / "Library" / "Application Support"
        else:
            xdg_config = os.environ.get("XDG_CONFIG_HOME")
            base = Path(xdg_config) if xdg_config else Path.home() / ".config"

        return base / APP_DIR_NAME / "config.yaml"

    @classmethod
    def load_from_yaml(cls, path: Path) -> "AppConfig":
        """Load configuration from a YAML file.

        Raises:
            ConfigurationError: If file cannot be read, parsed, or validated.
        """
        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {path}")

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}") from e

        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration file must contain a mapping")

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Failed to load configuration: {e}") from e

    def save_to_yaml(self, path: Path) -> None:
        """Save configuration to a YAML file, creating parent directories.

        Raises:
            ConfigurationError: If file cannot be written.
        """
        data = self.model_dump(mode="json")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration: {e}") from e


def get_app_data_dir() -> Path:
    """Platform data directory for stored records."""
    system = platform.system()

    if system == "Windows":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
    elif system == "Darwin":
        base = Path.home() / "Library" / "Application Support"
    else:
        xdg_data = os.environ.get("XDG_DATA_HOME")
        base = Path(xdg_data) if xdg_data else Path.home() / ".local" / "share"

    return base / APP_DIR_NAME


# =============================================================================
# API Key Manager
# =============================================================================


class APIKeyManager:
    """Stores and retrieves the Gemini API key.

    Attributes:
        backend: The storage backend to use
        encrypted_file_path: Path to encrypted key file (for ENCRYPTED_FILE backend)
    """

    SERVICE_NAME = "profilestream"
    ENV_VAR_NAME = "GEMINI_API_KEY"
    MIN_KEY_LENGTH = 10
    MAX_KEY_LENGTH = 256

    def __init__(
        self,
        backend: KeyStorageBackend,
        encrypted_file_path: Path | None = None,
    ) -> None:
        """Initialize the API key manager.

        Raises:
            ConfigurationError: If encrypted file backend selected without path.
        """
        self.backend = backend
        self.encrypted_file_path = encrypted_file_path

        if backend == KeyStorageBackend.ENCRYPTED_FILE and not encrypted_file_path:
            raise ConfigurationError("encrypted_file_path required for ENCRYPTED_FILE backend")

    def _validate_key_format(self, key: str) -> None:
        if not key or not isinstance(key, str):
            raise ConfigurationError("API key must be a non-empty string")
        if len(key) < self.MIN_KEY_LENGTH:
            raise ConfigurationError(
                f"API key too short (minimum {self.MIN_KEY_LENGTH} characters)"
            )
        if len(key) > self.MAX_KEY_LENGTH:
            raise ConfigurationError(f"API key too long (maximum {self.MAX_KEY_LENGTH} characters)")
        if key.strip() != key:
            raise ConfigurationError("API key should not have leading/trailing whitespace")

    def _get_fernet(self) -> Fernet:
        """Fernet keyed from machine identifiers, so the file only opens here."""
        identifiers = [
            platform.node(),
            platform.machine(),
            os.environ.get("USERNAME", os.environ.get("USER", "default")),
        ]
        key_bytes = hashlib.sha256(":".join(identifiers).encode("utf-8")).digest()
        return Fernet(base64.urlsafe_b64encode(key_bytes))

    def store_key(self, key: str) -> None:
        """Store the API key.

        Raises:
            ConfigurationError: If key format is invalid or storage fails.
        """
        self._validate_key_format(key)

        if self.backend == KeyStorageBackend.ENV:
            # Only affects the current process
            os.environ[self.ENV_VAR_NAME] = key

        elif self.backend == KeyStorageBackend.KEYRING:
            try:
                import keyring

                keyring.set_password(self.SERVICE_NAME, "api_key", key)
            except Exception as e:
                raise ConfigurationError(f"Failed to store key in keyring: {e}") from e

        elif self.backend == KeyStorageBackend.ENCRYPTED_FILE:
            assert self.encrypted_file_path is not None
            try:
                encrypted = self._get_fernet().encrypt(key.encode("utf-8"))
                self.encrypted_file_path.parent.mkdir(parents=True, exist_ok=True)
                self.encrypted_file_path.write_bytes(encrypted)
                if platform.system() != "Windows":
                    os.chmod(self.encrypted_file_path, 0o600)
            except OSError as e:
                raise ConfigurationError(f"Failed to store encrypted key: {e}") from e

        logger.info(f"API key stored using {self.backend.value} backend")

    def retrieve_key(self) -> str | None:
        """Retrieve the stored API key, or None when nothing is stored.

        Raises:
            ConfigurationError: If the encrypted file cannot be decrypted.
        """
        if self.backend == KeyStorageBackend.ENV:
            return os.environ.get(self.ENV_VAR_NAME)

        if self.backend == KeyStorageBackend.KEYRING:
            try:
                import keyring

                return keyring.get_password(self.SERVICE_NAME, "api_key")
            except Exception as e:
                logger.warning(f"Keyring lookup failed: {type(e).__name__}")
                return None

        if not self.encrypted_file_path or not self.encrypted_file_path.exists():
            return None

        try:
            decrypted = self._get_fernet().decrypt(self.encrypted_file_path.read_bytes())
        except InvalidToken as e:
            raise ConfigurationError("Failed to decrypt API key - encryption key mismatch") from e
        except OSError as e:
            raise ConfigurationError(f"Failed to retrieve encrypted key: {e}") from e
        return decrypted.decode("utf-8")

    def delete_key(self) -> None:
        """Remove the stored API key.

        Raises:
            ConfigurationError: If deletion fails.
        """
        if self.backend == KeyStorageBackend.ENV:
            os.environ.pop(self.ENV_VAR_NAME, None)

        elif self.backend == KeyStorageBackend.KEYRING:
            try:
                import keyring
                from keyring.errors import PasswordDeleteError

                keyring.delete_password(self.SERVICE_NAME, "api_key")
            except PasswordDeleteError:
                logger.debug("No API key in keyring to delete")

        elif self.encrypted_file_path and self.encrypted_file_path.exists():
            try:
                # Overwrite before unlinking
                self.encrypted_file_path.write_bytes(secrets.token_bytes(64))
                self.encrypted_file_path.unlink()
            except OSError as e:
                raise ConfigurationError(f"Failed to delete encrypted key file: {e}") from e

    def is_key_configured(self) -> bool:
        try:
            key = self.retrieve_key()
        except ConfigurationError:
            return False
        return key is not None and len(key) >= self.MIN_KEY_LENGTH


# =============================================================================
# Module-Level Functions
# =============================================================================


def get_config(path: Path | None = None) -> AppConfig:
    """Load configuration from ``path`` (or the default path), else defaults."""
    config_path = path or AppConfig.get_default_config_path()

    if config_path.exists():
        try:
            return AppConfig.load_from_yaml(config_path)
        except ConfigurationError as e:
            logger.warning(f"Ignoring unreadable configuration at {config_path}: {e}")

    return AppConfig()


def _key_manager(config: AppConfig, backend: KeyStorageBackend | None = None) -> APIKeyManager:
    backend = backend or config.key_storage_backend
    encrypted_path = None
    if backend == KeyStorageBackend.ENCRYPTED_FILE:
        encrypted_path = (
            config.encrypted_key_file_path
            or AppConfig.get_default_config_path().parent / "credentials.enc"
        )
    return APIKeyManager(backend, encrypted_path)


def configure_api_key(key: str, backend: KeyStorageBackend, config_path: Path | None = None) -> None:
    """Store an API key and remember the backend in the config file.

    Raises:
        ConfigurationError: If validation or storage fails.
    """
    config_path = config_path or AppConfig.get_default_config_path()
    config = get_config(config_path)

    manager = _key_manager(config, backend)
    manager.store_key(key)

    config.key_storage_backend = backend
    if manager.encrypted_file_path:
        config.encrypted_key_file_path = manager.encrypted_file_path
    config.save_to_yaml(config_path)


def get_api_key(config: AppConfig | None = None) -> str:
    """Retrieve the configured API key.

    Raises:
        APIKeyNotFoundError: If no key is configured.
    """
    config = config or get_config()
    key = _key_manager(config).retrieve_key()
    if not key:
        raise APIKeyNotFoundError(
            "No API key configured. Run 'profilestream config set-key' to set one up."
        )
    return key
