"""Tests for the token store."""

from __future__ import annotations

import json
import stat
from pathlib import Path

from exactfetch.auth.oauth2 import Credential
from exactfetch.auth.store import TokenStore


class TestTokenStore:
    def test_load_missing_returns_none(self, tmp_path: Path) -> None:
        store = TokenStore(tmp_path / "tokens.json")
        assert store.load() is None
        assert not store.exists()

    def test_save_writes_single_json_document(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "tokens.json"
        store = TokenStore(path)
        store.save(Credential("acc", "ref", expires_at=1570.0))

        data = json.loads(path.read_text())
        assert data == {
            "access_token": "acc",
            "refresh_token": "ref",
            "expires_at": 1570.0,
            "current_division": None,
        }
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_save_then_load(self, tmp_path: Path) -> None:
        store = TokenStore(tmp_path / "tokens.json")
        credential = Credential("acc", "ref", expires_at=1570.0, current_division=123)
        store.save(credential)
        assert TokenStore(tmp_path / "tokens.json").load() == credential

    def test_corrupt_file_is_treated_as_absent(self, tmp_path: Path) -> None:
        path = tmp_path / "tokens.json"
        path.write_text("{not json")
        assert TokenStore(path).load() is None

    def test_missing_keys_is_treated_as_absent(self, tmp_path: Path) -> None:
        path = tmp_path / "tokens.json"
        path.write_text(json.dumps({"access_token": "only"}))
        assert TokenStore(path).load() is None

    def test_clear_is_idempotent(self, tmp_path: Path) -> None:
        store = TokenStore(tmp_path / "tokens.json")
        store.save(Credential("acc", "ref"))
        assert store.clear() is True
        assert store.clear() is False
        assert store.load() is None


class TestEncryptedTokenStore:
    def test_encrypted_file_is_not_plain_json(self, tmp_path: Path) -> None:
        path = tmp_path / "tokens.json"
        store = TokenStore(path, encrypt=True)
        credential = Credential("acc", "ref", expires_at=1570.0)
        store.save(credential)

        assert "acc" not in path.read_text()
        assert (tmp_path / ".key_salt").exists()
        assert store.load() == credential

    def test_encrypted_store_reads_plain_document(self, tmp_path: Path) -> None:
        path = tmp_path / "tokens.json"
        TokenStore(path).save(Credential("acc", "ref", expires_at=1.0))
        assert TokenStore(path, encrypt=True).load() == Credential("acc", "ref", expires_at=1.0)

    def test_undecryptable_file_is_treated_as_absent(self, tmp_path: Path) -> None:
        path = tmp_path / "tokens.json"
        path.write_text("gAAAAAB-not-a-real-token")
        assert TokenStore(path, encrypt=True).load() is None
