"""
Export of accounts as delimited text or as a JSON backup.
"""

import datetime
import json
import logging
import os
from typing import Dict, Iterable, List, Optional

from credvault.errors import PersistenceError, ValidationError
from credvault.storage import Account
from credvault.store import AccountStore
from credvault.utils import set_owner_only_permissions
from . import config

logger = logging.getLogger(__name__)


class Exporter:
    """Serializes accounts from an AccountStore."""

    def __init__(self, store: AccountStore):
        self.store = store

    def select(self, scope: str = 'all', account_ids: Optional[Iterable[str]] = None) -> List[Account]:
        """
        Pick the accounts to export, in display order.

        Args:
            scope: 'all', 'favorite' or 'active' (not completed)
            account_ids: Restrict to these ids when given
        """
        if scope not in config.EXPORT_SCOPES:
            raise ValidationError(f"Unknown export scope: {scope}", field='scope')

        accounts = self.store.get_accounts_sorted()
        if account_ids is not None:
            wanted = set(account_ids)
            accounts = [a for a in accounts if a.id in wanted]
        if scope == 'favorite':
            accounts = [a for a in accounts if a.favorite]
        elif scope == 'active':
            accounts = [a for a in accounts if not a.completed]
        return accounts

    def to_text(self, accounts: Iterable[Account], delimiter: str = '|',
                fields: Optional[Dict[str, bool]] = None) -> str:
        """
        One line per account with the selected fields.

        Extras are joined into a single field. An account without extras
        simply has no extras field.
        """
        if not delimiter:
            raise ValidationError("Delimiter must not be empty", field='delimiter')
        selected = dict(config.EXPORT_DEFAULT_FIELDS)
        if fields:
            selected.update(fields)

        lines = []
        for account in accounts:
            parts = []
            if selected['email']:
                parts.append(account.email)
            if selected['password']:
                parts.append(account.password)
            if selected['totp']:
                parts.append(account.totp_secret)
            if selected['extras'] and account.extras:
                parts.append(config.EXPORT_EXTRAS_SEPARATOR.join(account.extras))
            lines.append(delimiter.join(parts))
        return '\n'.join(lines)

    def to_json(self, accounts: Iterable[Account]) -> str:
        """Full backup document with every tag in the store."""
        document = {
            'version': config.EXPORT_FORMAT_VERSION,
            'exportDate': datetime.datetime.now(datetime.timezone.utc).isoformat(),
            'accounts': [a.to_dict() for a in accounts],
            'tags': [t.to_dict() for t in self.store.get_tags()],
        }
        return json.dumps(document, indent=2, ensure_ascii=False)

    def export(self, format: str = 'txt', scope: str = 'all',
               account_ids: Optional[Iterable[str]] = None, delimiter: str = '|',
               fields: Optional[Dict[str, bool]] = None) -> str:
        """Export selected accounts as 'txt' or 'json'."""
        accounts = self.select(scope, account_ids)
        if format == 'json':
            return self.to_json(accounts)
        if format == 'txt':
            return self.to_text(accounts, delimiter, fields)
        raise ValidationError(f"Unknown export format: {format}", field='format')

    def write(self, filepath: str, content: str) -> None:
        """
        Write exported content to a file readable by the owner only.
        Raises:
            PersistenceError: If the file cannot be written
        """
        try:
            directory = os.path.dirname(os.path.abspath(filepath))
            os.makedirs(directory, exist_ok=True)
            with open(filepath, 'w', encoding='utf-8') as f:
                f.write(content)
        except OSError as e:
            logger.error(f"Error writing export file {filepath}: {e}", exc_info=True)
            raise PersistenceError(f"Cannot write export file: {e}", filepath) from e

        if not set_owner_only_permissions(filepath):
            logger.warning(f"Export file {filepath} may be readable by other users.")
        logger.info(f"Exported to {filepath}")

    @staticmethod
    def default_filename(format: str) -> str:
        """credentials_export_<date>.txt or credentials_backup_<date>.json"""
        today = datetime.date.today().isoformat()
        if format == 'json':
            return f"credentials_backup_{today}.json"
        return f"credentials_export_{today}.txt"
