"""
backup.py - Timestamped copies of the ledger file

Backups are byte copies of the backing file named bank-YYYYmmdd-HHMMSS.json.
A restore into a running store goes through LedgerStore.replace_from_bytes,
which writes and re-reads the file under the store's writer lock.
"""

from __future__ import annotations
from pathlib import Path
from typing import List, Optional, Tuple, Union
import re

from .core import Clock, NotFound, PersistenceError, utcnow
from .store import write_bytes_atomic


BACKUP_PREFIX = "bank-"
BACKUP_SUFFIX = ".json"
BACKUP_TIME_FORMAT = "%Y%m%d-%H%M%S"
_BACKUP_NAME = re.compile(r"^(bank-\d{8}-\d{6})(?:-(\d+))?\.json$")


def backup_sort_key(name: str) -> Tuple[str, int]:
    """Order same-second collisions by counter: "-120000.json" before "-120000-1.json"."""
    m = _BACKUP_NAME.match(name)
    if m is None:
        return (name, 0)
    return (m.group(1), int(m.group(2) or 0))


class BackupManager:
    """
    Creates, lists and restores backups of one ledger file.

    Example:
        backups = BackupManager("data/bank.json", "data/backups")
        name = backups.backup_now()     # "bank-20250101-120000.json"
        backups.restore_backup(name)
    """

    def __init__(
        self,
        store_path: Union[str, Path],
        backups_dir: Union[str, Path],
        clock: Optional[Clock] = None,
    ):
        self.store_path = Path(store_path)
        self.backups_dir = Path(backups_dir)
        self._clock: Clock = clock or utcnow

    def _next_name(self) -> str:
        stamp = self._clock().strftime(BACKUP_TIME_FORMAT)
        name = f"{BACKUP_PREFIX}{stamp}{BACKUP_SUFFIX}"
        n = 1
        while (self.backups_dir / name).exists():
            name = f"{BACKUP_PREFIX}{stamp}-{n}{BACKUP_SUFFIX}"
            n += 1
        return name

    def backup_now(self) -> str:
        """
        Copy the ledger file into the backups directory.

        Two backups within the same second get "-1", "-2"... suffixes.

        Returns:
            The backup's file name

        Raises:
            PersistenceError: If the ledger file cannot be read or the copy written
        """
        try:
            data = self.store_path.read_bytes()
        except OSError as exc:
            raise PersistenceError(f"failed to read {self.store_path}: {exc}") from exc
        try:
            self.backups_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"failed to create {self.backups_dir}: {exc}") from exc
        name = self._next_name()
        write_bytes_atomic(self.backups_dir / name, data)
        return name

    def list_backups(self) -> List[str]:
        """Backup file names, oldest first. Empty if the directory does not exist."""
        if not self.backups_dir.is_dir():
            return []
        return sorted(
            (p.name for p in self.backups_dir.iterdir()
             if p.is_file() and p.suffix == BACKUP_SUFFIX and not p.name.startswith(".")),
            key=backup_sort_key,
        )

    def read_backup(self, name: str) -> bytes:
        """
        Contents of one backup.

        Raises:
            NotFound: If name is not one of list_backups() (path separators never are)
            PersistenceError: If the backup cannot be read
        """
        if not name or "/" in name or "\\" in name or name not in self.list_backups():
            raise NotFound(f"backup {name!r} not found")
        source = self.backups_dir / name
        try:
            return source.read_bytes()
        except OSError as exc:
            raise PersistenceError(f"failed to read {source}: {exc}") from exc

    def restore_backup(self, name: str) -> Path:
        """
        Overwrite the ledger file with a backup's bytes.

        Only for a ledger no running store has open; a live store must go
        through LedgerStore.replace_from_bytes(read_backup(name)) instead.

        Raises:
            NotFound: If name is not one of list_backups()
            PersistenceError: If the copy cannot be written
        """
        write_bytes_atomic(self.store_path, self.read_backup(name))
        return self.store_path

    def __repr__(self) -> str:
        return f"BackupManager({str(self.store_path)!r}, {str(self.backups_dir)!r})"
