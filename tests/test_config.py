"""Tests for configuration management."""

from pathlib import Path

import pytest
import yaml

from exactfetch.config import ExactFetchConfig


class TestConfig:
    def test_default_config(self) -> None:
        config = ExactFetchConfig()
        assert config.api.base_url == "https://start.exactonline.nl/api"
        assert config.api.verify_ssl is True
        assert config.auth.token_lifetime == 570
        assert config.auth.token_file.name == "tokens.json"
        assert config.security.encrypt_at_rest is False
        assert config.retrieval.estimate_total is False

    def test_load_from_yaml(self, tmp_path: Path) -> None:
        yaml_content = {
            "api": {"client_id": "yaml-client", "timeout": 15},
            "auth": {"token_file": str(tmp_path / "t.json")},
            "retrieval": {"estimate_total": True, "default_division": "123"},
        }
        config_file = tmp_path / "exactfetch.yaml"
        config_file.write_text(yaml.dump(yaml_content))

        config = ExactFetchConfig.load(str(config_file))
        assert config.api.client_id == "yaml-client"
        assert config.api.timeout == 15
        assert config.auth.token_file == tmp_path / "t.json"
        assert config.retrieval.estimate_total is True
        assert config.retrieval.default_division == "123"

    def test_load_with_overrides(self) -> None:
        config = ExactFetchConfig.load(
            None,
            api={"base_url": "https://start.exactonline.be/api"},
            output_dir="/tmp/out",
        )
        assert config.api.base_url == "https://start.exactonline.be/api"
        assert config.output_dir == "/tmp/out"

    def test_env_var_override(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        config_file = tmp_path / "exactfetch.yaml"
        config_file.write_text(yaml.dump({"api": {"client_id": "from-yaml", "redirect_uri": "r"}}))
        monkeypatch.setenv("EXACTFETCH_CLIENT_ID", "from-env")
        monkeypatch.setenv("EXACTFETCH_CLIENT_SECRET", "s3cret")
        monkeypatch.setenv("EXACTFETCH_DIVISION", "42")

        config = ExactFetchConfig.load(str(config_file))
        assert config.api.client_id == "from-env"
        assert config.api.client_secret == "s3cret"
        assert config.api.redirect_uri == "r"
        assert config.retrieval.default_division == "42"

    def test_encrypt_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("EXACTFETCH_ENCRYPT_TOKENS", "true")
        config = ExactFetchConfig.load()
        assert config.security.encrypt_at_rest is True

    def test_missing_config_file(self) -> None:
        config = ExactFetchConfig.load("/nonexistent/config.yaml")
        # Should use defaults without error
        assert config.api.base_url == "https://start.exactonline.nl/api"
