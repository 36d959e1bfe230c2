"""OS-level helpers invoked by privileged commands."""

import asyncio
from pathlib import Path

from structlog import get_logger

from codex_switcher.exceptions import ExternalIOError


logger = get_logger(__name__)

QUARANTINE_ATTRIBUTE = "com.apple.quarantine"


async def remove_quarantine(app_path: Path) -> None:
    """Strip the macOS quarantine attribute from the Codex app bundle.

    Raises:
        ExternalIOError: If xattr is unavailable or exits non-zero
    """
    try:
        process = await asyncio.create_subprocess_exec(
            "xattr",
            "-dr",
            QUARANTINE_ATTRIBUTE,
            str(app_path),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise ExternalIOError(f"Cannot run xattr: {e}", path=str(app_path)) from e

    _, stderr = await process.communicate()
    if process.returncode != 0:
        message = stderr.decode(errors="replace").strip() or f"exit code {process.returncode}"
        logger.error("quarantine_fix_failed", path=str(app_path), error=message)
        raise ExternalIOError(f"Failed to clear quarantine: {message}", path=str(app_path))

    logger.info("quarantine_cleared", path=str(app_path))
