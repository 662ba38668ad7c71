"""Private file output shared by the lease file and the secrets file."""

import os
from pathlib import Path

import aiofiles


async def write_private_file(path: Path, payload: str) -> None:
    """Atomically replace ``path`` with ``payload``.

    The temporary file is mode 0600 from creation, before any bytes are
    written, and is removed if anything fails before the rename.
    """
    tmp_path = path.with_name(f".{path.name}.tmp")
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    os.close(fd)
    try:
        # O_CREAT keeps the mode of a temp file left over from a crash
        os.chmod(tmp_path, 0o600)
        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
            await f.write(payload)
        os.replace(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)
