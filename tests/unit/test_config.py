"""
Unit tests for server and client configuration.
"""

import socket

import pytest

from echoserver.config import ServerConfig, ClientConfig, DEFAULT_REPLY


class TestServerConfig:
    """Tests for ServerConfig."""

    def test_defaults(self):
        """Test the documented defaults."""
        config = ServerConfig()

        assert config.host == "0.0.0.0"
        assert config.port == 9901
        assert config.max_events == 10
        assert config.buffer_size == 1024
        assert config.backlog == socket.SOMAXCONN
        assert config.reply == b"Hello from server!\n"
        assert config.idle_timeout is None

    def test_default_reply_length(self):
        """The reply is a single 19-byte line."""
        assert len(DEFAULT_REPLY) == 19
        assert DEFAULT_REPLY.endswith(b"\n")

    def test_validate_accepts_defaults(self):
        """Test that defaults validate."""
        ServerConfig().validate()
        ServerConfig(port=0).validate()

    @pytest.mark.parametrize("kwargs", [
        {"port": -1},
        {"port": 65536},
        {"max_events": 0},
        {"buffer_size": 0},
        {"backlog": 0},
        {"reply": b""},
        {"idle_timeout": 0},
    ])
    def test_validate_rejects(self, kwargs):
        """Test that invalid values fail fast."""
        with pytest.raises(ValueError):
            ServerConfig(**kwargs).validate()

    def test_from_env(self, monkeypatch):
        """Test environment variable overrides."""
        monkeypatch.setenv("ECHO_HOST", "127.0.0.1")
        monkeypatch.setenv("ECHO_PORT", "9000")
        monkeypatch.setenv("ECHO_MAX_EVENTS", "64")
        monkeypatch.setenv("ECHO_BUFFER_SIZE", "4096")
        monkeypatch.setenv("ECHO_IDLE_TIMEOUT", "2.5")
        monkeypatch.setenv("ECHO_LOG_LEVEL", "DEBUG")

        config = ServerConfig.from_env()

        assert config.host == "127.0.0.1"
        assert config.port == 9000
        assert config.max_events == 64
        assert config.buffer_size == 4096
        assert config.idle_timeout == 2.5
        assert config.log_level == "DEBUG"

    def test_from_env_defaults(self, monkeypatch):
        """Test that missing variables fall back to defaults."""
        for name in ("ECHO_HOST", "ECHO_PORT", "ECHO_MAX_EVENTS",
                     "ECHO_BUFFER_SIZE", "ECHO_IDLE_TIMEOUT", "ECHO_LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)

        assert ServerConfig.from_env() == ServerConfig()


class TestClientConfig:
    """Tests for ClientConfig."""

    def test_defaults(self):
        """Test the documented defaults."""
        config = ClientConfig()

        assert config.host == "127.0.0.1"
        assert config.port == 9901
        assert config.payload == b"Hello, world!"
        assert config.buffer_size == 1024
        assert config.connections >= 1

    @pytest.mark.parametrize("kwargs", [
        {"port": 0},
        {"connections": 0},
        {"buffer_size": 0},
    ])
    def test_validate_rejects(self, kwargs):
        """Test that invalid values fail fast."""
        with pytest.raises(ValueError):
            ClientConfig(**kwargs).validate()
