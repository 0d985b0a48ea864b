"""Write configuration snapshots to the config directory.

The directory is brought in line with a snapshot by deleting every file
written for the previous snapshot and then writing the new entries. This is
not an atomic swap: a crash part way through leaves a partial file set
behind until the next successful sync.
"""

import logging
import os
from pathlib import Path, PurePosixPath

from configmap_sync.domain import ConfigSnapshot
from configmap_sync.errors import SyncError

logger = logging.getLogger(__name__)

DIRECTORY_MODE = 0o777
FILE_MODE = 0o666


class Materializer:
    """Keeps ``root`` holding exactly the files of the last synced snapshot."""

    def __init__(self, root: Path):
        self.root = Path(root).absolute()
        self._written: set[Path] = set()

    @property
    def written_files(self) -> frozenset[Path]:
        """Absolute paths written by the last sync."""
        return frozenset(self._written)

    def ensure_root(self) -> None:
        """Create the root directory if needed."""
        self.root.mkdir(mode=DIRECTORY_MODE, parents=True, exist_ok=True)

    def target_path(self, name: str) -> Path:
        """Resolve a snapshot key to its file path under the root.

        Raises:
            SyncError: If the key is empty, absolute, or climbs out of the root.
        """
        relative = PurePosixPath(name)
        if not name or relative.is_absolute() or ".." in relative.parts:
            raise SyncError(f"Refusing to write key {name!r} outside {self.root}", path=name)
        if name.endswith("/") or not relative.parts or relative.parts[-1] in (".", ""):
            raise SyncError(f"Key {name!r} does not name a file", path=name)
        return self.root.joinpath(*relative.parts)

    def _remove_obsolete(self) -> None:
        for path in sorted(self._written):
            try:
                path.unlink()
            except FileNotFoundError:
                logger.warning(f"Obsolete file unexpectedly does not exist (ignoring): {path}")
            except OSError as e:
                raise SyncError(f"Could not delete obsolete file {path}: {e}", path=path) from e
            self._written.discard(path)

    def _write(self, path: Path, content: bytes) -> None:
        logger.info(f"Writing {path}")
        try:
            path.parent.mkdir(mode=DIRECTORY_MODE, parents=True, exist_ok=True)
        except OSError as e:
            raise SyncError(
                f"Could not create parent directory for {path}: {e}", path=path
            ) from e

        try:
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
            with os.fdopen(fd, "wb") as f:
                f.write(content)
        except OSError as e:
            raise SyncError(f"Could not write file {path}: {e}", path=path) from e

    def sync(self, snapshot: ConfigSnapshot) -> None:
        """Make the directory match the snapshot.

        Raises:
            SyncError: If a key is invalid or a delete/write fails.
        """
        targets = {name: self.target_path(name) for name in snapshot}

        self._remove_obsolete()

        written: set[Path] = set()
        try:
            for name, path in targets.items():
                self._write(path, snapshot[name])
                written.add(path)
        except SyncError:
            # Keep tracking what did land on disk so the next sync removes it.
            self._written |= written
            raise

        self._written = written
        logger.debug(f"Synced {len(written)} files into {self.root}")
