"""Content hashing for uploaded books. Hash is SHA-256 of the file body, lowercase hex."""

import hashlib
import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from readersync.errors import UploadOverrun
from readersync.files.storage import remove_quietly

_CHUNK = 1 << 20
_HEX64 = re.compile(r"^[0-9a-f]{64}$")


@dataclass(frozen=True)
class SpooledUpload:
    """Upload copied to a temp file, with the size and hash of what was actually received."""

    path: Path
    size: int
    content_hash: str


def normalize_hash(value: str) -> str:
    """Lowercase and strip a client-supplied hash. Raises ValueError if it is not 64 hex chars."""
    value = (value or "").strip().lower()
    if not _HEX64.match(value):
        raise ValueError("sha256 is not hex")
    return value


def spool_to_temp(src: BinaryIO, tmp_dir: Path, max_bytes: int) -> SpooledUpload:
    """
    Copy src into a new temp file under tmp_dir, hashing while copying.
    Reads at most max_bytes + 1 bytes: a longer stream raises UploadOverrun.
    Blocking; run it in a worker thread. Raises OSError on write failure.
    The partial temp file is removed on any failure.
    """
    tmp_dir.mkdir(parents=True, exist_ok=True)
    fd, name = tempfile.mkstemp(prefix="upload_", dir=tmp_dir)
    path = Path(name)
    digest = hashlib.sha256()
    size = 0
    try:
        with os.fdopen(fd, "wb") as out:
            while True:
                chunk = src.read(min(_CHUNK, max_bytes - size + 1))
                if not chunk:
                    break
                size += len(chunk)
                if size > max_bytes:
                    raise UploadOverrun(f"stream exceeds {max_bytes} bytes")
                digest.update(chunk)
                out.write(chunk)
    except (OSError, UploadOverrun):
        remove_quietly(path)
        raise
    return SpooledUpload(path=path, size=size, content_hash=digest.hexdigest())
