"""Tests for reading and writing the Codex CLI auth file."""

import json
import os
import stat
from pathlib import Path

import pytest

from codex_switcher.accounts.external import (
    external_auth_exists,
    read_external_auth,
    write_external_auth,
)
from codex_switcher.exceptions import (
    AuthFileNotFoundError,
    AuthFileParseError,
    ExternalIOError,
)


@pytest.mark.unit
class TestReadExternalAuth:
    """Tests for read_external_auth."""

    def test_missing_file(self, tmp_path: Path) -> None:
        path = tmp_path / "auth.json"
        assert external_auth_exists(path) is False
        with pytest.raises(AuthFileNotFoundError):
            read_external_auth(path)

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "auth.json"
        path.write_text("{not json")
        with pytest.raises(AuthFileParseError):
            read_external_auth(path)

    def test_non_object(self, tmp_path: Path) -> None:
        path = tmp_path / "auth.json"
        path.write_text("[]")
        with pytest.raises(AuthFileParseError):
            read_external_auth(path)

    def test_reads_object(self, tmp_path: Path, auth_blob) -> None:
        path = tmp_path / "auth.json"
        blob = auth_blob()
        path.write_text(json.dumps(blob))

        assert external_auth_exists(path) is True
        assert read_external_auth(path) == blob


@pytest.mark.unit
class TestWriteExternalAuth:
    """Tests for the atomic write."""

    def test_creates_parent_and_round_trips(self, tmp_path: Path, auth_blob) -> None:
        path = tmp_path / ".codex" / "auth.json"
        blob = auth_blob()

        write_external_auth(blob, path)

        assert read_external_auth(path) == blob
        leftovers = [p for p in path.parent.iterdir() if p.name != "auth.json"]
        assert leftovers == []

    def test_replaces_existing_content(self, tmp_path: Path, auth_blob) -> None:
        path = tmp_path / "auth.json"
        path.write_text(json.dumps({"old": True}))

        write_external_auth(auth_blob(account_id="new"), path)

        assert read_external_auth(path)["tokens"]["account_id"] == "new"

    @pytest.mark.skipif(os.name != "posix", reason="POSIX permissions")
    def test_owner_only_permissions(self, tmp_path: Path, auth_blob) -> None:
        path = tmp_path / "auth.json"
        path.write_text("{}")
        path.chmod(0o644)

        write_external_auth(auth_blob(), path)

        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    @pytest.mark.skipif(os.name != "posix", reason="symlinks")
    def test_refuses_symlink(self, tmp_path: Path, auth_blob) -> None:
        target = tmp_path / "elsewhere.json"
        target.write_text("{}")
        link = tmp_path / "auth.json"
        link.symlink_to(target)

        with pytest.raises(ExternalIOError):
            write_external_auth(auth_blob(), link)
        assert target.read_text() == "{}"
