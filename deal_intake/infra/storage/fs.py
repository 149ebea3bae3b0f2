"""File system utilities for the upload spool."""
from __future__ import annotations

import os
import re
from pathlib import Path

import aiofiles

from deal_intake.infra.config.settings import settings
from deal_intake.shared.async_utils import run_sync

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def ensure_directories() -> None:
    """Create all required directories for the application."""
    settings.uploads_root.mkdir(parents=True, exist_ok=True)


def safe_filename(name: str) -> str:
    """Strip path components and unsafe characters from a client file name."""
    base = os.path.basename(name or "").strip()
    cleaned = _UNSAFE_CHARS.sub("_", base).strip("._")
    return cleaned or "upload.bin"


def upload_path(intake_id: str, local_id: str, filename: str) -> Path:
    """Get the spool path for an uploaded file."""
    return settings.uploads_root / intake_id / f"{local_id}_{safe_filename(filename)}"


async def write_bytes_async(path: Path, data: bytes) -> None:
    """Write a binary file atomically without blocking the loop."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        async with aiofiles.open(tmp_path, "wb") as f:
            await f.write(data)
            await f.flush()
        await run_sync(os.replace, tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            try:
                os.remove(tmp_path)
            except OSError:
                pass


async def read_bytes_async(path: Path) -> bytes:
    """Read a binary file asynchronously."""
    async with aiofiles.open(path, "rb") as f:
        return await f.read()


def delete_file(path: Path) -> bool:
    """Delete a spooled file; returns False when it was already gone."""
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False
