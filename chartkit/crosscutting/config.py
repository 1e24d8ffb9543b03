import os
import json
from typing import Dict, Any, Optional
from pathlib import Path

from dotenv import dotenv_values


class ConfigError(Exception):
    """Configuration error."""
    pass


DEFAULT_CACHE_TTL_MS = 60 * 60 * 1000
DEFAULT_CACHE_MAX_SIZE = 100

_TRUE_VALUES = {'1', 'true', 'yes', 'on'}


class ConfigManager:
    """Manages chartkit credentials and settings.

    Values are looked up in the process environment first, then in the
    config directory's .env file, then in credentials.json.
    """

    def __init__(self, config_dir: Optional[str] = None):
        """Initialize config manager."""
        self.config_dir = Path(config_dir) if config_dir else Path.home() / '.chartkit'
        self.config_dir.mkdir(parents=True, exist_ok=True)

        self.credentials_file = self.config_dir / 'credentials.json'
        self.env_file = self.config_dir / '.env'
        self.cache_dir = self.config_dir / 'cache'

    def load_credentials(self) -> Dict[str, Any]:
        """Load credentials from credentials.json file."""
        if not self.credentials_file.exists():
            return {}

        try:
            with open(self.credentials_file, 'r') as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            raise ConfigError(f"Failed to load credentials from {self.credentials_file}: {e}")

    def save_credentials(self, credentials: Dict[str, Any]) -> None:
        """Merge credentials into credentials.json file."""
        try:
            existing = self.load_credentials()
            existing.update(credentials)

            with open(self.credentials_file, 'w') as f:
                json.dump(existing, f, indent=2, ensure_ascii=False)

        except Exception as e:
            raise ConfigError(f"Failed to save credentials to {self.credentials_file}: {e}")

    def load_env_vars(self) -> Dict[str, str]:
        """Load variables from the .env file in the config directory."""
        if not self.env_file.exists():
            return {}

        try:
            values = dotenv_values(self.env_file)
        except IOError as e:
            raise ConfigError(f"Failed to load .env file {self.env_file}: {e}")

        return {key: value for key, value in values.items() if value is not None}

    def save_env_vars(self, env_vars: Dict[str, str]) -> None:
        """Save environment variables to .env file."""
        try:
            with open(self.env_file, 'w') as f:
                for key, value in env_vars.items():
                    f.write(f"{key}={value}\n")
        except IOError as e:
            raise ConfigError(f"Failed to save .env file {self.env_file}: {e}")

    def get_setting(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Look up a setting in the environment, then the .env file."""
        value = os.getenv(name)
        if value is not None and value.strip():
            return value
        value = self.load_env_vars().get(name)
        if value is not None and value.strip():
            return value
        return default

    def get_lastfm_api_key(self) -> Optional[str]:
        """Get Last.fm API key."""
        key = self.get_setting('LASTFM_API_KEY')
        if key:
            return key
        return self.load_credentials().get('lastfm', {}).get('api_key')

    def save_lastfm_api_key(self, api_key: str) -> None:
        self.save_credentials({'lastfm': {'api_key': api_key}})

    def get_yandex_token(self) -> Optional[str]:
        """Get Yandex Music token."""
        token = self.get_setting('YANDEX_TOKEN')
        if token:
            return token
        return self.load_credentials().get('yandex', {}).get('access_token')

    def save_yandex_token(self, token: str) -> None:
        self.save_credentials({'yandex': {'access_token': token}})

    def get_spotify_client_config(self) -> Dict[str, str]:
        """Get Spotify client credentials."""
        stored = self.load_credentials().get('spotify', {})
        client_id = self.get_setting('SPOTIFY_CLIENT_ID') or stored.get('client_id')
        client_secret = self.get_setting('SPOTIFY_CLIENT_SECRET') or stored.get('client_secret')

        if not client_id:
            raise ConfigError("SPOTIFY_CLIENT_ID not found in environment or credentials.json")
        if not client_secret:
            raise ConfigError("SPOTIFY_CLIENT_SECRET not found in environment or credentials.json")

        return {
            'client_id': client_id,
            'client_secret': client_secret
        }

    def _get_int_setting(self, name: str, default: int) -> int:
        value = self.get_setting(name)
        if value is None:
            return default
        try:
            parsed = int(value)
        except ValueError:
            raise ConfigError(f"{name} must be an integer, got {value!r}")
        if parsed <= 0:
            raise ConfigError(f"{name} must be positive, got {parsed}")
        return parsed

    def get_cache_settings(self) -> Dict[str, Any]:
        """Cache settings as plain values (ttl in milliseconds)."""
        persistent = self.get_setting('CHARTKIT_CACHE_PERSISTENT', '0')
        return {
            'ttl': self._get_int_setting('CHARTKIT_CACHE_TTL_MS', DEFAULT_CACHE_TTL_MS),
            'max_size': self._get_int_setting('CHARTKIT_CACHE_MAX_SIZE', DEFAULT_CACHE_MAX_SIZE),
            'persistent': persistent.strip().lower() in _TRUE_VALUES,
        }

    def get_api_keys(self) -> Dict[str, str]:
        """API keys for built-in providers that have one configured."""
        keys = {}
        lastfm_key = self.get_lastfm_api_key()
        if lastfm_key:
            keys['lastfm'] = lastfm_key
        return keys

    def validate_configuration(self) -> Dict[str, bool]:
        """Report which optional credentials are present."""
        validation = {
            'lastfm_api_key': bool(self.get_lastfm_api_key()),
            'yandex_token': bool(self.get_yandex_token()),
            'spotify_client': False,
        }

        try:
            self.get_spotify_client_config()
            validation['spotify_client'] = True
        except ConfigError:
            pass

        return validation

    def get_config_summary(self) -> Dict[str, Any]:
        """Get configuration summary (without sensitive data)."""
        return {
            'config_dir': str(self.config_dir),
            'credentials_file': str(self.credentials_file),
            'env_file': str(self.env_file),
            'cache_dir': str(self.cache_dir),
            'cache': self.get_cache_settings(),
            'validation': self.validate_configuration(),
        }

    def clear_credentials(self) -> None:
        """Clear all stored credentials."""
        if self.credentials_file.exists():
            self.credentials_file.unlink()

    def clear_env_vars(self) -> None:
        """Clear .env file."""
        if self.env_file.exists():
            self.env_file.unlink()


_config_manager: Optional[ConfigManager] = None


def get_config_manager() -> ConfigManager:
    """Get the process-wide config manager, creating it on first use."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager(os.getenv('CHARTKIT_CONFIG_DIR'))
    return _config_manager


def setup_config(config_dir: Optional[str] = None) -> ConfigManager:
    """Setup configuration with custom directory."""
    global _config_manager
    _config_manager = ConfigManager(config_dir)
    return _config_manager
