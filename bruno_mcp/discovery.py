"""
Discovery - Find Bruno request files in a collection

Walks a collection root and returns every `.bru` file that can become a tool.
- Symlinks (files or directories) are skipped, never followed
- `environments/` directories are skipped (case-insensitive)
- Every accepted file must resolve to a real path inside the root
"""

import logging
import os
from pathlib import Path

from .errors import AppError


logger = logging.getLogger(__name__)

BRU_SUFFIX = ".bru"
ENVIRONMENTS_DIR = "environments"


def relative_to_root(path: Path, root: Path) -> str:
    """
    Return path relative to root as a POSIX string.

    Raises AppError(E_DISCOVERY) if path is the root itself or escapes it.
    """
    try:
        rel = os.path.relpath(path, root)
    except ValueError:
        # Different drives on Windows
        rel = str(path)

    escapes = (
        rel in ("", os.curdir)
        or rel == os.pardir
        or rel.startswith(os.pardir + os.sep)
        or os.path.isabs(rel)
    )
    if escapes:
        raise AppError("E_DISCOVERY", f"Path traversal blocked for discovered file: {path}")

    return Path(rel).as_posix()


def discover_bru_files(root: Path) -> list[Path]:
    """
    Find all request files under root.

    Returns real (symlink-free) absolute paths, sorted by their POSIX path
    relative to the root so tool order is the same on every platform.
    """
    root_real = Path(os.path.realpath(root))
    found: set[Path] = set()

    def walk(directory: str) -> None:
        with os.scandir(directory) as entries:
            for entry in entries:
                if entry.is_symlink():
                    continue

                if entry.is_dir(follow_symlinks=False):
                    if entry.name.lower() == ENVIRONMENTS_DIR:
                        continue
                    walk(entry.path)
                    continue

                if not entry.is_file(follow_symlinks=False):
                    continue

                if entry.name.endswith(BRU_SUFFIX):
                    real = Path(os.path.realpath(entry.path))
                    relative_to_root(real, root_real)
                    found.add(real)

    walk(str(root_real))

    files = sorted(found, key=lambda p: relative_to_root(p, root_real))
    logger.debug("Discovered %d request files under %s", len(files), root_real)
    return files
