import json
import os
import shutil
import tempfile
from pathlib import Path

import pytest

from chartkit.crosscutting import config as config_module
from chartkit.crosscutting.config import (
    DEFAULT_CACHE_MAX_SIZE, DEFAULT_CACHE_TTL_MS, ConfigError, ConfigManager,
    get_config_manager, setup_config,
)


class TestConfigManager:
    """Tests for ConfigManager class."""

    def setup_method(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.manager = ConfigManager(self.temp_dir)

    def teardown_method(self):
        """Clean up test fixtures."""
        if os.path.exists(self.temp_dir):
            shutil.rmtree(self.temp_dir)

    def test_initialization(self):
        """Test ConfigManager initialization."""
        assert self.manager.config_dir == Path(self.temp_dir)
        assert self.manager.credentials_file == Path(self.temp_dir) / 'credentials.json'
        assert self.manager.env_file == Path(self.temp_dir) / '.env'
        assert self.manager.cache_dir == Path(self.temp_dir) / 'cache'
        assert self.manager.config_dir.exists()

    def test_env_file_round_trip(self):
        """Test saving and loading the .env file."""
        self.manager.save_env_vars({'LASTFM_API_KEY': 'file-key', 'OTHER': 'x'})
        assert self.manager.load_env_vars() == {'LASTFM_API_KEY': 'file-key', 'OTHER': 'x'}

        self.manager.clear_env_vars()
        assert self.manager.load_env_vars() == {}

    def test_environment_wins_over_env_file(self, monkeypatch):
        """Test that process environment takes precedence."""
        self.manager.save_env_vars({'LASTFM_API_KEY': 'file-key'})
        assert self.manager.get_lastfm_api_key() == 'file-key'

        monkeypatch.setenv('LASTFM_API_KEY', 'env-key')
        assert self.manager.get_lastfm_api_key() == 'env-key'

    def test_blank_environment_value_is_ignored(self, monkeypatch):
        """Test that whitespace-only values fall through."""
        monkeypatch.setenv('LASTFM_API_KEY', '   ')
        assert self.manager.get_setting('LASTFM_API_KEY', 'fallback') == 'fallback'

    def test_credentials_fallback(self):
        """Test that credentials.json is consulted last."""
        self.manager.save_lastfm_api_key('stored-key')
        self.manager.save_yandex_token('stored-token')

        assert self.manager.get_lastfm_api_key() == 'stored-key'
        assert self.manager.get_yandex_token() == 'stored-token'

        with open(self.manager.credentials_file) as f:
            stored = json.load(f)
        assert stored == {'lastfm': {'api_key': 'stored-key'}, 'yandex': {'access_token': 'stored-token'}}

    def test_corrupt_credentials(self):
        """Test that a broken credentials file raises ConfigError."""
        self.manager.credentials_file.write_text('{not json')
        with pytest.raises(ConfigError):
            self.manager.load_credentials()

    def test_spotify_config_missing(self):
        """Test Spotify config without credentials."""
        with pytest.raises(ConfigError, match="SPOTIFY_CLIENT_ID"):
            self.manager.get_spotify_client_config()

    def test_spotify_config_missing_secret(self, monkeypatch):
        """Test Spotify config with only a client ID."""
        monkeypatch.setenv('SPOTIFY_CLIENT_ID', 'id')
        with pytest.raises(ConfigError, match="SPOTIFY_CLIENT_SECRET"):
            self.manager.get_spotify_client_config()

    def test_spotify_config_from_environment(self, monkeypatch):
        """Test Spotify config from the environment."""
        monkeypatch.setenv('SPOTIFY_CLIENT_ID', 'id')
        monkeypatch.setenv('SPOTIFY_CLIENT_SECRET', 'secret')
        assert self.manager.get_spotify_client_config() == {'client_id': 'id', 'client_secret': 'secret'}

    def test_cache_settings_defaults(self):
        """Test cache defaults."""
        assert self.manager.get_cache_settings() == {
            'ttl': DEFAULT_CACHE_TTL_MS,
            'max_size': DEFAULT_CACHE_MAX_SIZE,
            'persistent': False,
        }

    def test_cache_settings_overrides(self, monkeypatch):
        """Test cache settings read from the environment."""
        monkeypatch.setenv('CHARTKIT_CACHE_TTL_MS', '5000')
        monkeypatch.setenv('CHARTKIT_CACHE_MAX_SIZE', '7')
        monkeypatch.setenv('CHARTKIT_CACHE_PERSISTENT', 'yes')
        assert self.manager.get_cache_settings() == {'ttl': 5000, 'max_size': 7, 'persistent': True}

    @pytest.mark.parametrize('value', ['abc', '0', '-5'])
    def test_cache_settings_invalid(self, monkeypatch, value):
        """Test that invalid cache numbers raise ConfigError."""
        monkeypatch.setenv('CHARTKIT_CACHE_MAX_SIZE', value)
        with pytest.raises(ConfigError):
            self.manager.get_cache_settings()

    def test_api_keys(self, monkeypatch):
        """Test API key collection."""
        assert self.manager.get_api_keys() == {}
        monkeypatch.setenv('LASTFM_API_KEY', 'k')
        assert self.manager.get_api_keys() == {'lastfm': 'k'}

    def test_validate_configuration(self, monkeypatch):
        """Test configuration validation."""
        monkeypatch.setenv('YANDEX_TOKEN', 'tok')
        assert self.manager.validate_configuration() == {
            'lastfm_api_key': False,
            'yandex_token': True,
            'spotify_client': False,
        }

    def test_config_summary_has_no_secrets(self, monkeypatch):
        """Test that the summary reports presence only."""
        monkeypatch.setenv('LASTFM_API_KEY', 'super-secret-key')
        summary = self.manager.get_config_summary()
        assert 'super-secret-key' not in json.dumps(summary)
        assert summary['validation']['lastfm_api_key'] is True


class TestGlobalConfig:
    """Tests for the process-wide config manager."""

    def test_get_config_manager_uses_env_dir(self, tmp_path, monkeypatch):
        """Test CHARTKIT_CONFIG_DIR and singleton behavior."""
        monkeypatch.setenv('CHARTKIT_CONFIG_DIR', str(tmp_path / 'cfg'))
        manager = get_config_manager()
        assert manager.config_dir == tmp_path / 'cfg'
        assert get_config_manager() is manager

    def test_setup_config_replaces_manager(self, tmp_path):
        """Test setup_config."""
        manager = setup_config(str(tmp_path))
        assert get_config_manager() is manager
        assert config_module._config_manager is manager
