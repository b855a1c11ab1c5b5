"""Utility functions for backup/restore operations."""

import asyncio
import os
import shutil
import tarfile
from pathlib import Path
from typing import List, Sequence, Tuple

from .._utils import logger
from ..exceptions import SourceNotFoundError

CHUNK_SIZE = 64 * 1024


def collect_entries(sources: Sequence[str]) -> List[Tuple[Path, str]]:
    """Resolve source paths into (file, archive name) pairs.

    A file source is stored under its base name; a directory source is stored
    under its own name with every regular file below it.

    Raises:
        SourceNotFoundError: If a source is missing or unreadable
        ValueError: If two sources map to the same archive name
    """
    entries: List[Tuple[Path, str]] = []
    seen = set()

    for source in sources:
        path = Path(source)
        if not path.exists() or not os.access(path, os.R_OK):
            raise SourceNotFoundError(source)

        if path.is_file():
            candidates = [(path, path.name)]
        elif path.is_dir():
            candidates = [
                (child, (Path(path.name) / child.relative_to(path)).as_posix())
                for child in sorted(path.rglob("*"))
                if child.is_file()
            ]
        else:
            raise SourceNotFoundError(source)

        for file_path, arcname in candidates:
            if arcname in seen:
                raise ValueError(f"Duplicate archive entry '{arcname}' from source {source}")
            seen.add(arcname)
            entries.append((file_path, arcname))

    return entries


async def create_archive(entries: Sequence[Tuple[Path, str]], output_path: Path, compression: bool = True) -> int:
    """Create tar archive from resolved entries.

    Yields to the event loop between entries so a caller deadline can
    interrupt a long archive.

    Args:
        entries: (file, archive name) pairs from collect_entries
        output_path: Staging file to write
        compression: gzip the archive

    Returns:
        Size of created archive in bytes
    """
    logger.info(f"Creating archive: {output_path} ({len(entries)} files)")

    with tarfile.open(output_path, "w:gz" if compression else "w") as tar:
        for file_path, arcname in entries:
            # Store symlink targets as regular files
            with open(file_path, "rb") as f:
                tar.addfile(tar.gettarinfo(arcname=arcname, fileobj=f), f)
            await asyncio.sleep(0)

    archive_size = output_path.stat().st_size
    logger.info(f"Archive created: {archive_size:,} bytes")

    return archive_size


def list_archive_members(archive_path: Path) -> List[str]:
    """Read the archive index. Raises tarfile.TarError on a damaged archive."""
    with tarfile.open(archive_path, "r:*") as tar:
        return [member.name for member in tar.getmembers() if member.isfile()]


def extract_member(tar: tarfile.TarFile, arcname: str, destination: Path, overwrite: bool = True) -> bool:
    """Write one archive entry to destination through a temp file.

    With overwrite the temp file is renamed over the destination. Without it
    the temp file is hard-linked into place, which fails instead of replacing
    a file that appeared after the conflict check.

    Returns:
        False if the destination (or one of its parents) was taken by a
        non-directory, True once the entry is written
    """
    member = tar.getmember(arcname)
    source = tar.extractfile(member)
    if source is None:
        raise KeyError(arcname)

    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
    except (FileExistsError, NotADirectoryError):
        source.close()
        return False

    tmp = destination.with_name(f".{destination.name}.restore.tmp")
    try:
        with source, open(tmp, "wb") as out:
            shutil.copyfileobj(source, out, CHUNK_SIZE)
        if overwrite:
            os.replace(tmp, destination)
        else:
            try:
                os.link(tmp, destination)
            except FileExistsError:
                return False
        return True
    finally:
        tmp.unlink(missing_ok=True)
