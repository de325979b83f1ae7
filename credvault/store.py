"""
In-memory account and tag store.

The store is the single owner of every Account and Tag. All mutations go
through its methods, which keep these invariants:

* account ``order`` values are exactly ``0..count-1`` with no duplicates,
* every tag id referenced by an account exists,
* a TOTP secret is either empty or 32 alphanumeric characters.

Instead of notifying subscribers, mutations return their result and append
a ``StoreEvent`` to a queue the presentation layer drains when it redraws.
"""

import copy
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Iterable, List, Optional

from credvault.errors import NotFoundError, ValidationError
from credvault.storage import Account, Tag
from credvault.utils import (
    generate_id,
    is_valid_email,
    is_valid_totp,
    normalize_email,
    normalize_totp,
    now_iso,
)
from . import config

logger = logging.getLogger(__name__)


@dataclass
class StoreEvent:
    """Something that changed in the store."""
    kind: str
    payload: Any = None


@dataclass
class AccountQuery:
    """Search and filter criteria for listing accounts."""
    text: str = ""
    tag_ids: List[str] = field(default_factory=list)
    untagged: bool = False
    status: str = "all"


class AccountStore:
    """Owns accounts, tags and settings and enforces their invariants."""

    UPDATABLE_FIELDS = ('email', 'password', 'totp_secret', 'extras', 'completed', 'favorite')

    def __init__(self, settings: Optional[Dict[str, Any]] = None):
        self._accounts: List[Account] = []
        self._tags: List[Tag] = []
        self.settings: Dict[str, Any] = dict(config.DEFAULT_SETTINGS)
        if settings:
            self.settings.update(settings)
        self._events: Deque[StoreEvent] = deque(maxlen=config.EVENT_QUEUE_MAX_SIZE)

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    @classmethod
    def from_snapshot(cls, snapshot: Optional[Dict[str, Any]]) -> 'AccountStore':
        """
        Build a store from a persisted snapshot, repairing invariants.

        Accounts without an email or password are dropped, emails and TOTP
        secrets are normalized and a malformed secret is cleared. Accounts
        without an order get their list position, orders are then compacted
        to 0..count-1 keeping their relative sequence, and tag references to
        missing tags are dropped.
        """
        settings = (snapshot or {}).get('settings')
        store = cls(settings if isinstance(settings, dict) else None)
        if not snapshot:
            return store

        tags = [Tag.from_dict(t) for t in cls._records(snapshot, 'tags')]
        store._tags = [t for t in tags if t.name]
        if len(store._tags) != len(tags):
            logger.warning(f"Dropped {len(tags) - len(store._tags)} tags without a name")

        accounts = []
        for data in cls._records(snapshot, 'accounts'):
            account = Account.from_dict(data)
            account.email = normalize_email(account.email)
            if not account.email or not account.password:
                logger.warning(f"Dropped account {account.id} without email or password")
                continue
            account.totp_secret = normalize_totp(account.totp_secret)
            if account.totp_secret and not is_valid_totp(account.totp_secret):
                logger.warning(f"Cleared invalid TOTP secret of account {account.id}")
                account.totp_secret = ''
            accounts.append(account)

        for index, account in enumerate(accounts):
            if account.order < 0:
                account.order = index
        ranked = sorted(enumerate(accounts), key=lambda item: (item[1].order, item[0]))
        for position, (_, account) in enumerate(ranked):
            account.order = position

        known = {t.id for t in store._tags}
        for account in accounts:
            cleaned = [tag_id for tag_id in dict.fromkeys(account.tags) if tag_id in known]
            if len(cleaned) != len(account.tags):
                logger.warning(f"Dropped unknown tag references from account {account.id}")
            account.tags = cleaned

        store._accounts = accounts
        logger.debug(f"Loaded {len(accounts)} accounts and {len(store._tags)} tags")
        return store

    @staticmethod
    def _records(snapshot: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
        records = snapshot.get(key)
        if not isinstance(records, list):
            return []
        return [r for r in records if isinstance(r, dict)]

    def to_snapshot(self) -> Dict[str, Any]:
        """Serializable copy of the whole store."""
        return {
            'accounts': [a.to_dict() for a in self._accounts],
            'tags': [t.to_dict() for t in self._tags],
            'settings': dict(self.settings),
        }

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def emit(self, kind: str, payload: Any = None) -> None:
        self._events.append(StoreEvent(kind, payload))

    def drain_events(self) -> List[StoreEvent]:
        """Return and forget all events recorded since the last drain."""
        events = list(self._events)
        self._events.clear()
        return events

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._accounts)

    def get_account(self, account_id: str) -> Optional[Account]:
        for account in self._accounts:
            if account.id == account_id:
                return account
        return None

    def _require_account(self, account_id: str) -> Account:
        account = self.get_account(account_id)
        if account is None:
            raise NotFoundError('account', account_id)
        return account

    def get_accounts(self) -> List[Account]:
        """All accounts in insertion order."""
        return list(self._accounts)

    def get_accounts_sorted(self) -> List[Account]:
        """All accounts in display order."""
        return sorted(self._accounts, key=lambda a: a.order)

    def _clean_totp(self, totp_secret: Optional[str]) -> str:
        totp = normalize_totp(totp_secret or '')
        if totp and not is_valid_totp(totp):
            raise ValidationError("Invalid TOTP (must be 32 alphanumeric chars or empty)", field='totp')
        return totp

    def _clean_email(self, email: Optional[str]) -> str:
        email = normalize_email(email or '')
        if not email:
            raise ValidationError("Email is required", field='email')
        if not is_valid_email(email):
            raise ValidationError(f"Invalid email: {email}", field='email')
        return email

    def _clean_password(self, password: Optional[str]) -> str:
        if not isinstance(password, str) or password == '':
            raise ValidationError("Password is required", field='password')
        return password

    def _clean_extras(self, extras: Optional[Iterable[str]]) -> List[str]:
        return [str(e) for e in (extras or []) if str(e)]

    def _clean_tags(self, tag_ids: Optional[Iterable[str]]) -> List[str]:
        cleaned = list(dict.fromkeys(tag_ids or []))
        for tag_id in cleaned:
            if self.get_tag(tag_id) is None:
                raise NotFoundError('tag', tag_id)
        return cleaned

    def add_account(self, email: str, password: str, totp_secret: str = '',
                    extras: Optional[Iterable[str]] = None,
                    tags: Optional[Iterable[str]] = None) -> Account:
        """
        Create an account at the end of the display order.
        Raises:
            ValidationError: If email, password or TOTP secret is malformed
            NotFoundError: If a tag id does not exist
        """
        account = Account(
            id=generate_id(),
            email=self._clean_email(email),
            password=self._clean_password(password),
            totp_secret=self._clean_totp(totp_secret),
            extras=self._clean_extras(extras),
            tags=self._clean_tags(tags),
            order=len(self._accounts),
            added_at=now_iso(),
        )
        self._accounts.append(account)
        self.emit('account_added', account.id)
        return account

    def update_account(self, account_id: str, **updates) -> Account:
        """
        Change account fields. Email and TOTP are normalized and validated.
        Order and tags have dedicated operations and cannot be set here.
        """
        account = self._require_account(account_id)
        unknown = set(updates) - set(self.UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update field(s): {', '.join(sorted(unknown))}")

        # Validate everything before touching the account.
        cleaned: Dict[str, Any] = {}
        if 'email' in updates:
            cleaned['email'] = self._clean_email(updates['email'])
        if 'password' in updates:
            cleaned['password'] = self._clean_password(updates['password'])
        if 'totp_secret' in updates:
            cleaned['totp_secret'] = self._clean_totp(updates['totp_secret'])
        if 'extras' in updates:
            cleaned['extras'] = self._clean_extras(updates['extras'])
        for flag in ('completed', 'favorite'):
            if flag in updates:
                cleaned[flag] = bool(updates[flag])

        for name, value in cleaned.items():
            setattr(account, name, value)
        self.emit('account_updated', account.id)
        return account

    def delete_account(self, account_id: str) -> Account:
        """Remove an account and close the gap it leaves in the order."""
        account = self._require_account(account_id)
        self._accounts.remove(account)
        for other in self._accounts:
            if other.order > account.order:
                other.order -= 1
        self.emit('account_deleted', account.id)
        return account

    def toggle_completed(self, account_id: str) -> bool:
        account = self._require_account(account_id)
        account.completed = not account.completed
        self.emit('account_updated', account.id)
        return account.completed

    def toggle_favorite(self, account_id: str) -> bool:
        account = self._require_account(account_id)
        account.favorite = not account.favorite
        self.emit('account_updated', account.id)
        return account.favorite

    def touch_last_used(self, account_id: str) -> Account:
        account = self._require_account(account_id)
        account.last_used = now_iso()
        self.emit('account_updated', account.id)
        return account

    def find_by_credentials(self, email: str, password: str) -> Optional[Account]:
        """First account, in insertion order, with this email and exact password."""
        email = normalize_email(email or '')
        for account in self._accounts:
            if normalize_email(account.email) == email and account.password == password:
                return account
        return None

    def set_totp(self, account_id: str, totp_secret: str) -> Account:
        """Attach (or replace) the TOTP secret of an account."""
        return self.update_account(account_id, totp_secret=totp_secret)

    def merge_extras(self, account_id: str, extras: Iterable[str]) -> bool:
        """
        Append extras the account does not have yet (exact string match).
        Returns:
            True if anything was added
        """
        account = self._require_account(account_id)
        changed = False
        for extra in self._clean_extras(extras):
            if extra not in account.extras:
                account.extras.append(extra)
                changed = True
        if changed:
            self.emit('account_updated', account.id)
        return changed

    def reorder_account(self, account_id: str, new_order: int) -> bool:
        """
        Move an account to a new display position, shifting the accounts in
        between by one so orders stay 0..count-1.

        ``new_order == count`` means "after the last account" and lands on
        the last position.

        Returns:
            False if the account already was at that position
        Raises:
            NotFoundError: If the account does not exist
            ValidationError: If new_order is outside 0..count
        """
        account = self._require_account(account_id)
        count = len(self._accounts)
        if isinstance(new_order, bool) or not isinstance(new_order, int) or not 0 <= new_order <= count:
            raise ValidationError(f"Order must be between 0 and {count}", field='order')
        new_order = min(new_order, count - 1)

        old_order = account.order
        if old_order == new_order:
            return False

        account.order = new_order
        for other in self._accounts:
            if other is account:
                continue
            if old_order < new_order:
                if old_order < other.order <= new_order:
                    other.order -= 1
            elif new_order <= other.order < old_order:
                other.order += 1

        self.emit('accounts_reordered', {'account_id': account_id, 'order': new_order})
        return True

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    def get_tags(self) -> List[Tag]:
        return list(self._tags)

    def get_tag(self, tag_id: str) -> Optional[Tag]:
        for tag in self._tags:
            if tag.id == tag_id:
                return tag
        return None

    def _require_tag(self, tag_id: str) -> Tag:
        tag = self.get_tag(tag_id)
        if tag is None:
            raise NotFoundError('tag', tag_id)
        return tag

    def find_tag_by_name(self, name: str) -> Optional[Tag]:
        """Case-insensitive lookup by name."""
        wanted = (name or '').strip().lower()
        for tag in self._tags:
            if tag.name.lower() == wanted:
                return tag
        return None

    def create_tag(self, name: str, color: Optional[str] = None) -> Tag:
        name = (name or '').strip()
        if not name:
            raise ValidationError("Tag name is required", field='name')
        tag = Tag(id=generate_id(), name=name, color=color or config.DEFAULT_TAG_COLOR,
                  created_at=now_iso())
        self._tags.append(tag)
        self.emit('tag_created', tag.id)
        return tag

    def update_tag(self, tag_id: str, name: Optional[str] = None, color: Optional[str] = None) -> Tag:
        tag = self._require_tag(tag_id)
        if name is not None:
            name = name.strip()
            if not name:
                raise ValidationError("Tag name is required", field='name')
            tag.name = name
        if color:
            tag.color = color
        self.emit('tag_updated', tag.id)
        return tag

    def delete_tag(self, tag_id: str) -> Tag:
        """Delete a tag and remove it from every account."""
        tag = self._require_tag(tag_id)
        for account in self._accounts:
            if tag_id in account.tags:
                account.tags.remove(tag_id)
        self._tags.remove(tag)
        self.emit('tag_deleted', tag.id)
        return tag

    def add_tag_to_account(self, account_id: str, tag_id: str) -> bool:
        """Returns False if the account already had the tag."""
        account = self._require_account(account_id)
        self._require_tag(tag_id)
        if tag_id in account.tags:
            return False
        account.tags.append(tag_id)
        self.emit('account_updated', account.id)
        return True

    def remove_tag_from_account(self, account_id: str, tag_id: str) -> bool:
        account = self._require_account(account_id)
        if tag_id not in account.tags:
            return False
        account.tags.remove(tag_id)
        self.emit('account_updated', account.id)
        return True

    def clear_account_tags(self, account_id: str) -> int:
        """Remove every tag from an account. Returns how many were removed."""
        account = self._require_account(account_id)
        removed = len(account.tags)
        if removed:
            account.tags = []
            self.emit('account_updated', account.id)
        return removed

    # ------------------------------------------------------------------
    # Search & filter
    # ------------------------------------------------------------------

    def _matches_text(self, account: Account, text: str) -> bool:
        if text in account.email.lower():
            return True
        if any(text in extra.lower() for extra in account.extras):
            return True
        for tag_id in account.tags:
            tag = self.get_tag(tag_id)
            if tag and text in tag.name.lower():
                return True
        return False

    def _matches_status(self, account: Account, status: str) -> bool:
        if status == 'completed':
            return account.completed
        if status == 'active':
            return not account.completed
        if status == 'favorite':
            return account.favorite
        return True

    def search(self, text: str) -> List[Account]:
        """Accounts whose email, extras or tag names contain the text."""
        return self.query(AccountQuery(text=text))

    def query(self, criteria: AccountQuery) -> List[Account]:
        """
        Accounts matching all criteria, in display order.

        The untagged filter takes precedence over selected tags; selected
        tags must all be present on an account.
        """
        if criteria.status not in config.STATUS_FILTERS:
            raise ValidationError(f"Unknown status filter: {criteria.status}", field='status')

        accounts = self.get_accounts_sorted()
        text = (criteria.text or '').strip().lower()
        if text:
            accounts = [a for a in accounts if self._matches_text(a, text)]
        if criteria.untagged:
            accounts = [a for a in accounts if not a.tags]
        elif criteria.tag_ids:
            accounts = [a for a in accounts if all(t in a.tags for t in criteria.tag_ids)]
        if criteria.status != 'all':
            accounts = [a for a in accounts if self._matches_status(a, criteria.status)]
        return accounts

    def counts(self) -> Dict[str, Any]:
        """Number of accounts per status filter and per tag."""
        return {
            'all': len(self._accounts),
            'active': sum(1 for a in self._accounts if not a.completed),
            'completed': sum(1 for a in self._accounts if a.completed),
            'favorite': sum(1 for a in self._accounts if a.favorite),
            'untagged': sum(1 for a in self._accounts if not a.tags),
            'tags': {t.id: sum(1 for a in self._accounts if t.id in a.tags) for t in self._tags},
        }

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get_settings(self) -> Dict[str, Any]:
        return copy.deepcopy(self.settings)

    def update_settings(self, **updates) -> Dict[str, Any]:
        self.settings.update(updates)
        self.emit('settings_updated', dict(self.settings))
        return self.get_settings()

    def clear_all(self) -> None:
        """Remove every account and tag and restore default settings."""
        self._accounts = []
        self._tags = []
        self.settings = dict(config.DEFAULT_SETTINGS)
        self.emit('data_cleared')
