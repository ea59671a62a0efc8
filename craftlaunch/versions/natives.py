"""Native library extraction."""

import logging
import shutil
import zipfile
from pathlib import Path
from typing import Iterable, Optional

from ..errors import StorageError

logger = logging.getLogger(__name__)


def extract_natives(archive: Path, target_dir: Path, exclude: Optional[Iterable[str]] = None) -> int:
    """Unpack a natives jar flat into ``target_dir``.

    Entries starting with any ``exclude`` prefix (usually ``META-INF/``) are
    skipped, existing files are overwritten. Returns the number of files written.
    """
    excludes = tuple(exclude or ())
    target_dir.mkdir(parents=True, exist_ok=True)
    written = 0
    try:
        with zipfile.ZipFile(archive, 'r') as zip_ref:
            for info in zip_ref.infolist():
                if info.is_dir() or info.filename.startswith(excludes):
                    continue
                name = Path(info.filename).name
                if not name:
                    continue
                with zip_ref.open(info) as src, open(target_dir / name, 'wb') as dst:
                    shutil.copyfileobj(src, dst)
                written += 1
    except (zipfile.BadZipFile, OSError) as e:
        raise StorageError(f"Cannot extract natives from {archive}: {e}") from e

    logger.debug("Extracted %d native files from %s", written, archive.name)
    return written
