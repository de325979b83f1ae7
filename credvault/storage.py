"""
Entities and file persistence for the credentials manager.

The data file is a plain JSON snapshot:
    {"accounts": [...], "tags": [...], "settings": {...}}
"""

import copy
import json
import logging
import os
import shutil
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from credvault.errors import PersistenceError
from credvault.utils import generate_id, set_owner_only_permissions
from . import config

logger = logging.getLogger(__name__)


def _text(value: Any) -> str:
    """None becomes '', anything else its string form."""
    return '' if value is None else str(value)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass
class Account:
    """Represents a single set of credentials."""
    id: str
    email: str
    password: str
    totp_secret: str = ""
    extras: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    completed: bool = False
    favorite: bool = False
    order: int = 0
    added_at: str = ""
    last_used: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'id': self.id,
            'email': self.email,
            'password': self.password,
            'totpSecret': self.totp_secret,
            'extras': list(self.extras),
            'tags': list(self.tags),
            'completed': self.completed,
            'favorite': self.favorite,
            'order': self.order,
            'addedAt': self.added_at,
            'lastUsed': self.last_used,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Account':
        """Create from dictionary. Accepts the legacy 'totp' key."""
        extras = data.get('extras')
        tags = data.get('tags')
        return cls(
            id=_text(data.get('id')) or generate_id(),
            email=_text(data.get('email')),
            password=_text(data.get('password')),
            totp_secret=_text(data.get('totpSecret', data.get('totp'))),
            extras=[str(e) for e in extras] if isinstance(extras, list) else [],
            tags=[t for t in tags if isinstance(t, str)] if isinstance(tags, list) else [],
            completed=bool(data.get('completed', False)),
            favorite=bool(data.get('favorite', False)),
            order=data['order'] if _is_int(data.get('order')) else -1,
            added_at=_text(data.get('addedAt')),
            last_used=data.get('lastUsed'),
        )


@dataclass
class Tag:
    """A named, colored label that can be attached to accounts."""
    id: str
    name: str
    color: str = config.DEFAULT_TAG_COLOR
    created_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'color': self.color,
            'createdAt': self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Tag':
        return cls(
            id=_text(data.get('id')) or generate_id(),
            name=_text(data.get('name')).strip(),
            color=_text(data.get('color')) or config.DEFAULT_TAG_COLOR,
            created_at=_text(data.get('createdAt')),
        )


class StorageManager:

    """Manages the on-disk JSON snapshot of the store."""

    def __init__(self, filepath: str, save_delay: float = config.SAVE_DEBOUNCE_SECONDS):
        """
        Initialize storage manager.
        Args:
            filepath: Path to the data file
            save_delay: Seconds to wait for further mutations before writing;
                0 writes on every schedule_save call
        """
        self.filepath = filepath
        self.save_delay = save_delay
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._pending: Optional[Dict[str, Any]] = None
        self.last_error: Optional[PersistenceError] = None

    def exists(self) -> bool:
        return os.path.exists(self.filepath)

    def load(self) -> Optional[Dict[str, Any]]:
        """
        Read the snapshot from disk.
        Returns:
            The snapshot dictionary, or None if the file does not exist
        Raises:
            PersistenceError: If the file cannot be read or parsed
        """
        if not self.exists():
            return None
        try:
            with open(self.filepath, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Error reading data file {self.filepath}: {e}", exc_info=True)
            raise PersistenceError(f"Cannot read data file: {e}", self.filepath) from e

        if not isinstance(data, dict):
            raise PersistenceError("Data file does not contain a JSON object", self.filepath)
        return data

    def save(self, snapshot: Dict[str, Any]) -> None:
        """
        Write a snapshot to disk immediately, replacing any pending write.
        Raises:
            PersistenceError: If the write fails
        """
        with self._lock:
            self._cancel_timer()
            self._pending = None
            self._write(snapshot)

    def schedule_save(self, snapshot: Dict[str, Any]) -> None:
        """
        Queue a snapshot for writing. Bursts of calls within save_delay
        collapse into a single write of the latest snapshot.
        """
        if self.save_delay <= 0:
            self.save(snapshot)
            return
        with self._lock:
            self._pending = copy.deepcopy(snapshot)
            self._cancel_timer()
            self._timer = threading.Timer(self.save_delay, self._flush_in_background)
            self._timer.daemon = True
            self._timer.start()

    def has_pending(self) -> bool:
        return self._pending is not None

    def flush(self) -> None:
        """
        Write the pending snapshot now, if there is one.
        Raises:
            PersistenceError: If the write fails
        """
        with self._lock:
            self._cancel_timer()
            if self._pending is not None:
                self._write(self._pending)
                self._pending = None

    def close(self) -> None:
        """Flush pending data. Errors are logged, not raised."""
        try:
            self.flush()
        except PersistenceError as e:
            logger.error(f"Final save failed: {e}")

    def _flush_in_background(self) -> None:
        try:
            self.flush()
        except PersistenceError as e:
            # The snapshot stays pending; the next flush retries it.
            logger.error(f"Background save failed: {e}")

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _write(self, snapshot: Dict[str, Any]) -> None:
        """Save snapshot to file via a temporary file and an atomic move."""
        tmp_path = self.filepath + '.tmp'
        try:
            directory = os.path.dirname(os.path.abspath(self.filepath))
            os.makedirs(directory, exist_ok=True)

            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(snapshot, f, indent=2, ensure_ascii=False)

            shutil.move(tmp_path, self.filepath)

            if not set_owner_only_permissions(self.filepath):
                logger.warning(f"Failed to set secure file permissions for data file: {self.filepath}. This might indicate a permission issue.")
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Error saving data file {self.filepath}: {e}", exc_info=True)
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            self.last_error = PersistenceError(f"Cannot write data file: {e}", self.filepath)
            raise self.last_error from e

        self.last_error = None
        logger.debug(f"Saved {len(snapshot.get('accounts', []))} accounts to {self.filepath}")
