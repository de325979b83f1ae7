import datetime
import logging
import os
import platform
import re
import stat
import uuid

from . import config

logger = logging.getLogger(__name__)

if platform.system() == "Windows":
    try:
        import win32security
        import win32api
        import ntsecuritycon
        WINDOWS_SECURITY_AVAILABLE = True
    except ImportError:
        logger.warning("pywin32 is unavailable, data files keep inherited Windows permissions.")
        WINDOWS_SECURITY_AVAILABLE = False
else:
    WINDOWS_SECURITY_AVAILABLE = False

_TOTP_PATTERN = re.compile(r"^[A-Za-z0-9]+$")


def generate_id() -> str:
    return str(uuid.uuid4())


def now_iso() -> str:
    return datetime.datetime.now().isoformat()


def normalize_email(email: str) -> str:
    return email.strip().lower()


def normalize_totp(totp: str) -> str:
    return totp.strip().upper()


def has_totp(totp) -> bool:
    """True if a TOTP value is present (non-empty after trimming)."""
    return bool(totp and totp.strip())


def is_valid_email(email: str) -> bool:
    return '@' in email and '.' in email


def is_valid_totp(totp: str) -> bool:
    """A secret is valid when it has exactly 32 letters and digits."""
    return len(totp) == config.TOTP_SECRET_LENGTH and bool(_TOTP_PATTERN.match(totp))


def set_owner_only_permissions(filepath: str) -> bool:
    """
    Set file to be readable/writable by owner only.
    Returns False if the permissions could not be applied.
    """
    if platform.system() == 'Windows':
        return _set_windows_file_permissions(filepath)
    try:
        os.chmod(filepath, stat.S_IRUSR | stat.S_IWUSR)  # 600
    except OSError as e:
        logger.error(f"Failed to set file permissions for {filepath}: {e}")
        return False
    return True


def _set_windows_file_permissions(filepath: str) -> bool:
    """Replace the file's DACL with a single entry for the current user."""
    if not WINDOWS_SECURITY_AVAILABLE:
        logger.warning(f"pywin32 is missing, {filepath} keeps its inherited permissions.")
        return False

    try:
        token = win32security.OpenProcessToken(win32api.GetCurrentProcess(), ntsecuritycon.TOKEN_QUERY)
        owner_sid = win32security.GetTokenInformation(token, win32security.TokenUser)[0]

        dacl = win32security.ACL()
        dacl.AddAccessAllowedAce(win32security.ACL_REVISION,
                                 ntsecuritycon.FILE_GENERIC_READ | ntsecuritycon.FILE_GENERIC_WRITE,
                                 owner_sid)
        win32security.SetNamedSecurityInfo(
            filepath,
            win32security.SE_FILE_OBJECT,
            win32security.DACL_SECURITY_INFORMATION | win32security.PROTECTED_DACL_SECURITY_INFORMATION,
            None, None, dacl, None,
        )
    except win32api.error as e:
        logger.error(f"Cannot restrict {filepath} to the current user: {e.strerror}")
        return False

    logger.debug(f"Restricted {filepath} to the current user")
    return True
