"""Access to the Codex CLI's own credential file (~/.codex/auth.json).

The Codex CLI reads and rewrites this file on its own schedule. Writes from
this side go through a temp file plus rename so the CLI never sees a
partially written document.
"""

import contextlib
import os
import tempfile
from pathlib import Path
from typing import Any

import orjson
from structlog import get_logger

from codex_switcher.accounts.constants import PRIVATE_DIR_MODE, PRIVATE_FILE_MODE
from codex_switcher.config.settings import DEFAULT_AUTH_PATH
from codex_switcher.exceptions import (
    AuthFileNotFoundError,
    AuthFileParseError,
    ExternalIOError,
)


logger = get_logger(__name__)


def _resolve(path: Path | None) -> Path:
    return Path(path or DEFAULT_AUTH_PATH).expanduser()


def external_auth_exists(path: Path | None = None) -> bool:
    return _resolve(path).exists()


def read_external_auth(path: Path | None = None) -> dict[str, Any]:
    """Read the external credential blob.

    Raises:
        AuthFileNotFoundError: If the file does not exist
        AuthFileParseError: If the content is not a JSON object
        ExternalIOError: On other read failures
    """
    path = _resolve(path)

    try:
        raw = path.read_bytes()
    except FileNotFoundError as e:
        raise AuthFileNotFoundError(str(path)) from e
    except OSError as e:
        raise ExternalIOError(f"Cannot read Codex auth file: {e}", path=str(path)) from e

    try:
        data = orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise AuthFileParseError(
            f"Codex auth file is not valid JSON: {e}", path=str(path)
        ) from e

    if not isinstance(data, dict):
        raise AuthFileParseError(
            "Codex auth file must contain a JSON object", path=str(path)
        )

    return data


def write_external_auth(auth_json: dict[str, Any], path: Path | None = None) -> None:
    """Atomically replace the external credential file with owner-only permissions.

    Raises:
        ExternalIOError: If the target is a symlink or the write fails
    """
    path = _resolve(path)

    if path.is_symlink():
        raise ExternalIOError(
            "Refusing to write Codex auth file through a symlink", path=str(path)
        )

    payload = orjson.dumps(auth_json, option=orjson.OPT_INDENT_2)

    try:
        path.parent.mkdir(mode=PRIVATE_DIR_MODE, parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
        )
    except OSError as e:
        raise ExternalIOError(f"Cannot write Codex auth file: {e}", path=str(path)) from e

    try:
        with os.fdopen(fd, "wb") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        if os.name == "posix":
            os.chmod(tmp_name, PRIVATE_FILE_MODE)
        os.replace(tmp_name, path)
        if os.name == "posix":
            os.chmod(path, PRIVATE_FILE_MODE)
    except OSError as e:
        with contextlib.suppress(OSError):
            os.unlink(tmp_name)
        logger.error("codex_auth_write_failed", path=str(path), error=str(e))
        raise ExternalIOError(f"Cannot write Codex auth file: {e}", path=str(path)) from e

    logger.debug("codex_auth_written", path=str(path))
