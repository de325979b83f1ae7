"""
Exceptions raised by the credentials manager core.
"""

from typing import Any, Optional


class CredVaultError(Exception):
    """Base class for all CredVault errors."""


class ValidationError(CredVaultError):
    """Input failed validation (email, TOTP secret, backup structure, ...)."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class DecodeError(CredVaultError):
    """A secret contains a character outside the Base32 alphabet."""

    def __init__(self, character: str, position: int):
        super().__init__(f"Invalid base32 character {character!r} at position {position}")
        self.character = character
        self.position = position


class PersistenceError(CredVaultError):
    """Reading or writing the data file failed."""

    def __init__(self, message: str, filepath: Optional[str] = None, result: Any = None):
        super().__init__(message)
        self.filepath = filepath
        # Outcome of an operation that was applied in memory before the save failed
        self.result = result


class NotFoundError(CredVaultError):
    """An account or tag id does not exist in the store."""

    def __init__(self, kind: str, entity_id: str):
        super().__init__(f"{kind.capitalize()} not found: {entity_id}")
        self.kind = kind
        self.entity_id = entity_id
