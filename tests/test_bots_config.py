"""Tests for bots.config module."""

import os
from unittest import mock

import pytest

from bots.config import EnvironmentConfig, env_bool, env_int

REQUIRED = {
    "DISCORD_TOKEN": "discord-token",
    "STARTGG_API_KEY": "startgg-key",
    "TOURNAMENT_TABLE_NAME": "fightrise-matches",
}


class TestEnvBool:
    """Test env_bool function."""

    @pytest.mark.parametrize("value", ["1", "true", "YES", " on ", " True "])
    def test_true_values(self, value):
        with mock.patch.dict(os.environ, {"CACHE": value}, clear=True):
            assert env_bool("CACHE") is True

    @pytest.mark.parametrize("value", ["0", "false", "NO", " off "])
    def test_false_values(self, value):
        with mock.patch.dict(os.environ, {"CACHE": value}, clear=True):
            assert env_bool("CACHE", default=True) is False

    @pytest.mark.parametrize("value", ["maybe", "2", "", "  "])
    def test_unparseable_values_fall_back_to_default(self, value):
        with mock.patch.dict(os.environ, {"CACHE": value}, clear=True):
            assert env_bool("CACHE", default=True) is True
            assert env_bool("CACHE") is False

    def test_unset_uses_default(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            assert env_bool("CACHE") is False
            assert env_bool("CACHE", default=True) is True


class TestEnvInt:
    """Test env_int function."""

    @pytest.mark.parametrize(
        ("raw", "expected"), [("123", 123), ("0", 0), ("-4", -4), ("  789  ", 789)]
    )
    def test_valid_values(self, raw, expected):
        with mock.patch.dict(os.environ, {"ROLE": raw}, clear=True):
            assert env_int("ROLE") == expected

    @pytest.mark.parametrize("raw", ["", "not_a_number", "12.5", "123abc"])
    def test_invalid_values_fall_back_to_default(self, raw):
        with mock.patch.dict(os.environ, {"ROLE": raw}, clear=True):
            assert env_int("ROLE", default=42) == 42

    def test_unset_without_default_is_none(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            assert env_int("ROLE") is None


class TestEnvironmentConfig:
    """Test EnvironmentConfig.load."""

    def test_defaults(self):
        with mock.patch.dict(os.environ, REQUIRED, clear=True):
            config = EnvironmentConfig.load()

        assert config.discord_token == "discord-token"
        assert config.tournament_table_name == "fightrise-matches"
        assert config.aws_region == "us-east-1"
        assert config.admin_role_id is None
        assert config.startgg_max_retries == 3
        assert config.cache_enabled is True
        assert config.cache_ttl_seconds == 30
        assert config.log_level == "INFO"

    def test_optional_overrides(self):
        env = {
            **REQUIRED,
            "AWS_REGION": "eu-west-1",
            "TOURNAMENT_ADMIN_ROLE_ID": "777",
            "TOURNAMENT_GUILD_ID": "888",
            "STARTGG_MAX_RETRIES": "5",
            "STARTGG_CACHE_ENABLED": "off",
            "STARTGG_CACHE_TTL_SECONDS": "10",
            "LOG_LEVEL": "debug",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            config = EnvironmentConfig.load()

        assert config.aws_region == "eu-west-1"
        assert config.admin_role_id == 777
        assert config.guild_id == 888
        assert config.startgg_max_retries == 5
        assert config.cache_enabled is False
        assert config.cache_ttl_seconds == 10
        assert config.log_level == "DEBUG"

    def test_explicit_zero_is_kept(self):
        env = {
            **REQUIRED,
            "STARTGG_MAX_RETRIES": "0",
            "STARTGG_CACHE_TTL_SECONDS": "0",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            config = EnvironmentConfig.load()

        assert config.startgg_max_retries == 0
        assert config.cache_ttl_seconds == 0
        assert config.cache_max_entries == 500

    def test_missing_required_values_are_all_reported(self):
        env = {"DISCORD_TOKEN": "discord-token"}
        with mock.patch.dict(os.environ, env, clear=True):
            with pytest.raises(RuntimeError) as excinfo:
                EnvironmentConfig.load()

        assert str(excinfo.value) == (
            "Missing env vars: STARTGG_API_KEY, TOURNAMENT_TABLE_NAME"
        )

    def test_config_is_immutable(self):
        with mock.patch.dict(os.environ, REQUIRED, clear=True):
            config = EnvironmentConfig.load()
        with pytest.raises(AttributeError):
            config.discord_token = "other"
