"""
High-level API used by front ends.

CredentialsManager wires the store, persistence, OTP generator, importers and
exporter together. Every mutation is applied in memory first and then queued
for saving; a failed save never undoes the mutation.
"""

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from credvault.errors import PersistenceError
from credvault.exporter import Exporter
from credvault.importer import BackupImporter, BackupImportResult, FileParser, read_text_file
from credvault.merge import MergeEngine, MergeStats
from credvault.storage import Account, StorageManager, Tag
from credvault.store import AccountQuery, AccountStore, StoreEvent
from credvault.totp import TOTPGenerator, TOTPRefreshScheduler
from . import config

logger = logging.getLogger(__name__)


def default_data_path() -> str:
    """Get the default path for the data file."""
    home = os.path.expanduser("~")
    return os.path.join(home, config.CONFIG_DIR_NAME, config.DEFAULT_DATA_FILE)


@dataclass
class TextImportResult:
    """Outcome of a delimited text import."""
    delimiter: str
    stats: MergeStats


class CredentialsManager:
    """Facade over the credentials store."""

    def __init__(self, filepath: Optional[str] = None,
                 save_delay: float = config.SAVE_DEBOUNCE_SECONDS,
                 clock: Callable[[], float] = time.time,
                 storage: Optional[StorageManager] = None,
                 totp: Optional[TOTPGenerator] = None):
        """
        Initialize the manager. Call open() to load existing data.
        Args:
            filepath: Data file, defaults to ~/.credvault/credentials.json
            save_delay: Debounce delay for writes, 0 to write synchronously
            clock: Time source for OTP generation
        """
        self.storage = storage or StorageManager(filepath or default_data_path(), save_delay)
        self.totp = totp or TOTPGenerator(clock=clock)
        self.parser = FileParser()
        self._bind(AccountStore())

    def _bind(self, store: AccountStore) -> None:
        self.store = store
        self.merge_engine = MergeEngine(store)
        self.backup_importer = BackupImporter(store, self.merge_engine)
        self.exporter = Exporter(store)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> 'CredentialsManager':
        """
        Load the data file if it exists.
        Raises:
            PersistenceError: If the file exists but cannot be read
        """
        snapshot = self.storage.load()
        self._bind(AccountStore.from_snapshot(snapshot))
        logger.info(f"Opened {self.storage.filepath} with {len(self.store)} accounts")
        return self

    def save(self) -> None:
        """Write the current state now. Raises PersistenceError on failure."""
        self.storage.save(self.store.to_snapshot())

    def close(self) -> None:
        self.storage.close()
        self.totp.clear_cache()

    def __enter__(self) -> 'CredentialsManager':
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _persist(self) -> None:
        self.storage.schedule_save(self.store.to_snapshot())

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def get_account(self, account_id: str) -> Optional[Account]:
        return self.store.get_account(account_id)

    def list_accounts(self, query: Optional[AccountQuery] = None) -> List[Account]:
        """Accounts in display order, optionally filtered."""
        return self.store.query(query or AccountQuery())

    def counts(self) -> Dict[str, Any]:
        return self.store.counts()

    def add_account(self, email: str, password: str, totp_secret: str = '',
                    extras: Optional[Iterable[str]] = None,
                    tags: Optional[Iterable[str]] = None) -> Account:
        account = self.store.add_account(email, password, totp_secret, extras, tags)
        self._persist()
        return account

    def update_account(self, account_id: str, **updates) -> Account:
        account = self.store.update_account(account_id, **updates)
        self._persist()
        return account

    def delete_account(self, account_id: str) -> Account:
        account = self.store.delete_account(account_id)
        self._persist()
        return account

    def reorder_account(self, account_id: str, new_order: int) -> bool:
        moved = self.store.reorder_account(account_id, new_order)
        if moved:
            self._persist()
        return moved

    def toggle_completed(self, account_id: str) -> bool:
        state = self.store.toggle_completed(account_id)
        self._persist()
        return state

    def toggle_favorite(self, account_id: str) -> bool:
        state = self.store.toggle_favorite(account_id)
        self._persist()
        return state

    def touch_last_used(self, account_id: str) -> Account:
        account = self.store.touch_last_used(account_id)
        self._persist()
        return account

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    def get_tags(self) -> List[Tag]:
        return self.store.get_tags()

    def create_tag(self, name: str, color: Optional[str] = None) -> Tag:
        tag = self.store.create_tag(name, color)
        self._persist()
        return tag

    def update_tag(self, tag_id: str, name: Optional[str] = None, color: Optional[str] = None) -> Tag:
        tag = self.store.update_tag(tag_id, name, color)
        self._persist()
        return tag

    def delete_tag(self, tag_id: str) -> Tag:
        tag = self.store.delete_tag(tag_id)
        self._persist()
        return tag

    def add_tag_to_account(self, account_id: str, tag_id: str) -> bool:
        added = self.store.add_tag_to_account(account_id, tag_id)
        if added:
            self._persist()
        return added

    def remove_tag_from_account(self, account_id: str, tag_id: str) -> bool:
        removed = self.store.remove_tag_from_account(account_id, tag_id)
        if removed:
            self._persist()
        return removed

    def clear_account_tags(self, account_id: str) -> int:
        removed = self.store.clear_account_tags(account_id)
        if removed:
            self._persist()
        return removed

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get_settings(self) -> Dict[str, Any]:
        return self.store.get_settings()

    def update_settings(self, **updates) -> Dict[str, Any]:
        settings = self.store.update_settings(**updates)
        self._persist()
        return settings

    def clear_all_data(self) -> None:
        self.store.clear_all()
        self.totp.clear_cache()
        self.save()

    def drain_events(self) -> List[StoreEvent]:
        return self.store.drain_events()

    # ------------------------------------------------------------------
    # One-time passwords
    # ------------------------------------------------------------------

    def get_code(self, account_id: str, now: Optional[float] = None) -> str:
        """Current code for an account, or the unavailable placeholder."""
        account = self.store.get_account(account_id)
        if account is None or not account.totp_secret:
            return config.UNAVAILABLE_CODE
        return self.totp.generate(account.totp_secret, now)

    def get_codes(self, accounts: Optional[Iterable[Account]] = None,
                  now: Optional[float] = None) -> Dict[str, str]:
        """Codes keyed by account id for every given account that has 2FA."""
        accounts = [a for a in (accounts if accounts is not None else self.store.get_accounts())
                    if a.totp_secret]
        codes = self.totp.generate_many([a.totp_secret for a in accounts], now)
        return {a.id: codes[a.totp_secret] for a in accounts}

    def seconds_remaining(self, now: Optional[float] = None) -> float:
        return self.totp.seconds_remaining(now)

    def start_code_refresh(self, callback: Callable[[], None]) -> TOTPRefreshScheduler:
        """Run callback now and at every window boundary until stopped."""
        scheduler = TOTPRefreshScheduler(self.totp, callback)
        scheduler.start()
        return scheduler

    # ------------------------------------------------------------------
    # Import / export
    # ------------------------------------------------------------------

    def import_text(self, content: str, delimiter: Optional[str] = None,
                    has_totp: bool = True) -> TextImportResult:
        """
        Import delimited text. Without an explicit delimiter one is detected,
        falling back to the defaultDelimiter setting.
        """
        if delimiter is None:
            delimiter = self.parser.detect_delimiter(content)
            if delimiter is None:
                delimiter = self.store.settings.get('defaultDelimiter') or config.DEFAULT_SETTINGS['defaultDelimiter']
                logger.info(f"Delimiter not detected, using default {delimiter!r}")

        parsed = self.parser.parse(content, delimiter, has_totp)
        stats = self.merge_engine.merge(parsed.candidates)
        stats.errors = sorted(parsed.errors + stats.errors, key=lambda e: e['line'])
        result = TextImportResult(delimiter=delimiter, stats=stats)
        self._persist_import(result)
        return result

    def import_backup(self, text: str) -> BackupImportResult:
        """Restore a JSON backup document."""
        result = self.backup_importer.import_text(text)
        self._persist_import(result)
        return result

    def _persist_import(self, result) -> None:
        """Save after an import; a failed save carries the import result."""
        try:
            self._persist()
        except PersistenceError as e:
            e.result = result
            raise

    def import_file(self, filepath: str, delimiter: Optional[str] = None,
                    has_totp: bool = True):
        """Import a .json backup or a delimited text file."""
        content = read_text_file(filepath)
        if filepath.lower().endswith('.json'):
            return self.import_backup(content)
        return self.import_text(content, delimiter, has_totp)

    def export(self, format: str = 'txt', scope: str = 'all',
               account_ids: Optional[Iterable[str]] = None, delimiter: str = '|',
               fields: Optional[Dict[str, bool]] = None) -> str:
        return self.exporter.export(format, scope, account_ids, delimiter, fields)

    def export_to_file(self, filepath: str, format: str = 'txt', **options) -> int:
        """
        Export to a file.
        Returns:
            Number of exported accounts
        """
        accounts = self.exporter.select(options.get('scope', 'all'), options.get('account_ids'))
        content = self.export(format, **options)
        self.exporter.write(filepath, content)
        return len(accounts)
