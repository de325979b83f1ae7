"""
Import of delimited text files and JSON backups.

Text lines look like ``email<d>password[<d>totp]<d>extra<d>extra...`` for a
configurable delimiter ``<d>``. Bad lines are reported and skipped; they never
abort the rest of the file.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from credvault.errors import PersistenceError, ValidationError
from credvault.merge import ImportCandidate, MergeEngine, MergeStats
from credvault.store import AccountStore
from credvault.utils import is_valid_email, is_valid_totp
from . import config

logger = logging.getLogger(__name__)


@dataclass
class ParseResult:
    """Records that parsed cleanly and per-line errors for the rest."""
    candidates: List[ImportCandidate] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)


def read_text_file(filepath: str) -> str:
    """
    Read an import file as text.
    Raises:
        PersistenceError: If the file cannot be read
    """
    try:
        with open(filepath, 'r', encoding='utf-8-sig') as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as e:
        logger.error(f"Cannot read import file {filepath}: {e}")
        raise PersistenceError(f"Cannot read import file: {e}", filepath) from e


class FileParser:
    """Parses delimited credential lines."""

    DELIMITERS = config.DELIMITER_CANDIDATES

    def parse(self, content: str, delimiter: str, has_totp: bool = True) -> ParseResult:
        """
        Parse delimited text.

        Args:
            content: File content
            delimiter: Field separator, any non-empty string
            has_totp: Whether the third field is a TOTP secret; when False
                every field after the password is an extra

        Returns:
            ParseResult with one candidate per valid line
        """
        if not delimiter:
            raise ValidationError("Delimiter must not be empty", field='delimiter')

        result = ParseResult()
        for number, raw in enumerate(content.split('\n'), start=1):
            line = raw.strip()
            if not line or line.startswith(config.COMMENT_PREFIX):
                continue

            parts = [p.strip() for p in line.split(delimiter)]
            if len(parts) < config.MIN_IMPORT_FIELDS:
                self._error(result, number, "Not enough fields (need at least email and password)", line)
                continue

            email, password = parts[0], parts[1]
            if has_totp:
                totp = parts[2] if len(parts) > 2 else ''
                extras = parts[3:]
                if totp and not is_valid_totp(totp):
                    self._error(result, number, "Invalid TOTP (must be 32 alphanumeric chars or empty)", line)
                    continue
            else:
                totp = ''
                extras = parts[2:]

            if not is_valid_email(email):
                self._error(result, number, "Invalid email", line)
                continue

            result.candidates.append(ImportCandidate(
                email=email,
                password=password,
                totp=totp,
                extras=[e for e in extras if e],
                line=number,
            ))

        logger.debug(f"Parsed {len(result.candidates)} records, {len(result.errors)} errors")
        return result

    def _error(self, result: ParseResult, number: int, reason: str, content: str) -> None:
        logger.debug(f"Line {number} skipped: {reason}")
        result.errors.append({'line': number, 'reason': reason, 'content': content})

    def detect_delimiter(self, content: str) -> Optional[str]:
        """
        Guess the delimiter from the first non-blank, non-comment lines.

        Each candidate scores one point per sampled line that splits into at
        least three parts. Ties go to the earlier candidate.

        Returns:
            The best delimiter, or None if no candidate scored
        """
        lines = [l for l in content.split('\n')
                 if l.strip() and not l.startswith(config.COMMENT_PREFIX)]
        lines = lines[:config.DELIMITER_DETECTION_LINES]
        if not lines:
            return None

        best, best_score = None, 0
        for delimiter in self.DELIMITERS:
            score = sum(1 for l in lines
                        if len(l.split(delimiter)) >= config.DELIMITER_DETECTION_MIN_PARTS)
            if score > best_score:
                best, best_score = delimiter, score
        return best


@dataclass
class BackupImportResult:
    """Outcome of restoring a JSON backup."""
    stats: MergeStats
    tags_created: int = 0
    tags_reused: int = 0


class BackupImporter:
    """Restores JSON backups through the same merge path as text imports."""

    def __init__(self, store: AccountStore, engine: Optional[MergeEngine] = None):
        self.store = store
        self.engine = engine or MergeEngine(store)

    def loads(self, text: str) -> Dict[str, Any]:
        """
        Parse and validate backup text.
        Raises:
            ValidationError: If the text is not a valid backup document
        """
        try:
            data = json.loads(text)
        except ValueError as e:
            raise ValidationError(f"Invalid JSON file: {e}", field='backup') from e
        self.validate(data)
        return data

    def validate(self, data: Any) -> None:
        if not isinstance(data, dict):
            raise ValidationError("Invalid backup format: expected a JSON object", field='backup')
        if not isinstance(data.get('accounts'), list):
            raise ValidationError("Invalid backup format: missing accounts", field='accounts')
        if 'tags' in data and data['tags'] is not None and not isinstance(data['tags'], list):
            raise ValidationError("Invalid backup format: tags must be a list", field='tags')

    def merge_tags(self, tags: List[Any], result: BackupImportResult) -> Dict[str, str]:
        """
        Map backup tag ids onto store tags.

        A tag whose name matches an existing tag (case-insensitively) reuses
        that tag, keeping its color. Otherwise a tag with the imported name
        and color is created. Tags without a string name, or with an id that
        is not a string, are skipped.
        """
        mapping: Dict[str, str] = {}
        for imported in tags or []:
            if (not isinstance(imported, dict)
                    or not isinstance(imported.get('name'), str) or not imported['name'].strip()
                    or not isinstance(imported.get('id', ''), str)):
                logger.warning(f"Skipping malformed tag in backup: {imported!r}")
                continue

            existing = self.store.find_tag_by_name(imported['name'])
            if existing is not None:
                tag = existing
                result.tags_reused += 1
            else:
                color = imported.get('color')
                tag = self.store.create_tag(imported['name'], color if isinstance(color, str) else None)
                result.tags_created += 1

            if imported.get('id'):
                mapping[imported['id']] = tag.id
        return mapping

    @staticmethod
    def check_account(account: Any) -> Optional[str]:
        """
        Structural check of one backup account.
        Returns:
            The reason the entry is unusable, or None if it can be merged
        """
        if not isinstance(account, dict):
            return "Account entry is not an object"
        missing = [name for name in ('email', 'password')
                   if not isinstance(account.get(name), str) or not account.get(name)]
        if missing:
            return f"Missing required field(s): {', '.join(missing)}"
        totp = account.get('totpSecret', account.get('totp'))
        if totp is not None and not isinstance(totp, str):
            return "Invalid TOTP (must be a string)"
        extras = account.get('extras')
        if extras is not None and (not isinstance(extras, list)
                                   or not all(isinstance(e, str) for e in extras)):
            return "Extras must be a list of strings"
        tags = account.get('tags')
        if tags is not None and (not isinstance(tags, list)
                                 or not all(isinstance(t, str) for t in tags)):
            return "Tags must be a list of tag ids"
        return None

    def to_candidates(self, accounts: List[Any], mapping: Dict[str, str]) -> ParseResult:
        """Convert backup accounts to candidates with remapped tag ids."""
        result = ParseResult()
        for number, account in enumerate(accounts, start=1):
            reason = self.check_account(account)
            if reason:
                logger.debug(f"Backup account {number} skipped: {reason}")
                result.errors.append({'line': number, 'reason': reason})
                continue

            tags = [mapping[t] for t in account.get('tags') or [] if t in mapping]
            result.candidates.append(ImportCandidate(
                email=account['email'],
                password=account['password'],
                totp=account.get('totpSecret', account.get('totp')) or '',
                extras=list(account.get('extras') or []),
                tags=list(dict.fromkeys(tags)),
                line=number,
            ))
        return result

    def import_data(self, data: Dict[str, Any]) -> BackupImportResult:
        """
        Merge a validated backup document into the store.
        Raises:
            ValidationError: If the document structure is invalid
        """
        self.validate(data)
        result = BackupImportResult(stats=MergeStats())
        mapping = self.merge_tags(data.get('tags') or [], result)

        parsed = self.to_candidates(data['accounts'], mapping)
        result.stats = self.engine.merge(parsed.candidates)
        result.stats.errors = sorted(parsed.errors + result.stats.errors, key=lambda e: e['line'])
        logger.info(f"Backup restored: {result.tags_created} tags created, {result.tags_reused} reused")
        return result

    def import_text(self, text: str) -> BackupImportResult:
        return self.import_data(self.loads(text))

    def import_file(self, filepath: str) -> BackupImportResult:
        return self.import_text(read_text_file(filepath))
