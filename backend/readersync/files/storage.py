"""Safe path resolution for book files under the library dir (no directory traversal)."""

import logging
import os
import re
import shutil
import tempfile
from pathlib import Path
from typing import Optional

log = logging.getLogger(__name__)

# File ids become path segments: letters, digits, underscore and dash only
_SAFE_FILE_ID = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def sanitize_file_id(file_id: Optional[str]) -> Optional[str]:
    """Return file_id if it is safe to use as a path segment, else None."""
    if file_id is None:
        return None
    file_id = file_id.strip()
    if not _SAFE_FILE_ID.match(file_id):
        return None
    return file_id


def library_file_path(library_root: Path, file_id: str) -> Path:
    """
    Content location for a file id: <library>/<first two chars>/<file_id>.
    Raises ValueError for ids that are not safe path segments.
    """
    safe = sanitize_file_id(file_id)
    if not safe:
        raise ValueError(f"Unsafe file id: {file_id!r}")
    return library_root / safe[:2].lower() / safe


def publish_to_library(src: Path, dst: Path) -> bool:
    """
    Hard-link a verified temp file to its library location without ever overwriting.
    Returns False when dst already exists. Across filesystems the bytes are first
    copied to a private staging file next to dst, which is then linked and removed.
    src is left in place for the caller to remove. Raises OSError on other failures.
    """
    dst.parent.mkdir(parents=True, exist_ok=True)
    try:
        os.link(src, dst)
        return True
    except FileExistsError:
        return False
    except OSError as e:
        log.debug("link %s -> %s failed (%s); copying instead", src, dst, e)
    fd, name = tempfile.mkstemp(prefix=".staging_", dir=dst.parent)
    os.close(fd)
    staging = Path(name)
    try:
        shutil.copyfile(src, staging)
        os.link(staging, dst)
        return True
    except FileExistsError:
        return False
    finally:
        remove_quietly(staging)


def remove_quietly(path: Path) -> None:
    """Delete a file, ignoring a missing file and logging other failures."""
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        log.warning("Could not remove %s: %s", path, e)
