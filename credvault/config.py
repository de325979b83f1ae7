"""
Configuration constants for the CredVault application.
"""

# Application Metadata
APP_VERSION = "1.0"  # Use: Current version of the application. Type: str. Range: Semantic versioning string (e.g., "1.0.0")
APP_NAME = "CredVault Credentials Manager"  # Use: Full name of the application. Type: str. Range: Any valid string.
# Use: Notice printed by the command line interface. Type: str (multi-line). Range: Any valid string.
APP_DISCLAIMER = """
Credentials are stored locally and unencrypted. Keep the data file on a
device you own and protect it with your operating system's account security.
"""

# TOTP Settings
TOTP_PERIOD_SECONDS = 30  # Use: Length of a TOTP time window in seconds (RFC 6238 time step). Type: int. Range: 30 is the value every authenticator app expects.
TOTP_DIGITS = 6  # Use: Number of decimal digits in a generated code. Type: int. Range: 6 (RFC 4226 default).
TOTP_SECRET_LENGTH = 32  # Use: Exact length of an accepted TOTP secret. Type: int. Range: 32 characters (160-bit Base32 secret).
TOTP_CACHE_MAX_SIZE = 100  # Use: Maximum number of secrets kept in the code cache before cleanup runs. Type: int. Range: Positive integer.
TOTP_MAX_WORKERS = 8  # Use: Thread pool size used when computing many codes at once. Type: int. Range: 1 to the number of CPU threads.
BASE32_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"  # Use: RFC 4648 Base32 alphabet used to decode secrets. Type: str. Range: Fixed.
UNAVAILABLE_CODE = "------"  # Use: Placeholder returned instead of a code when a secret cannot be decoded. Type: str. Range: Any string that cannot be mistaken for a code.

# Import Settings
DELIMITER_CANDIDATES = ["|", ":", ";", ";;;", ";;", "\t", ","]  # Use: Delimiters tried, in priority order, by delimiter auto-detection. Type: list[str]. Range: Non-empty strings.
DELIMITER_DETECTION_LINES = 3  # Use: Number of non-blank, non-comment lines sampled for delimiter detection. Type: int. Range: Positive integer.
DELIMITER_DETECTION_MIN_PARTS = 3  # Use: Number of parts a sampled line must split into to count for a delimiter. Type: int. Range: 2 or more.
MIN_IMPORT_FIELDS = 2  # Use: Minimum number of fields (email and password) on an import line. Type: int. Range: 2.
COMMENT_PREFIX = "#"  # Use: Lines starting with this prefix are ignored during import. Type: str. Range: Any non-empty string.

# Export Settings
EXPORT_FORMAT_VERSION = "1.0"  # Use: Version written into JSON backups. Type: str. Range: Any version string.
EXPORT_EXTRAS_SEPARATOR = ", "  # Use: Separator used to join extras into a single text export field. Type: str. Range: Any string.
EXPORT_DEFAULT_FIELDS = {  # Use: Fields included in a text export when the caller does not choose. Type: dict[str, bool]. Range: Keys email, password, totp, extras.
    "email": True,
    "password": True,
    "totp": True,
    "extras": True,
}
EXPORT_SCOPES = ("all", "favorite", "active")  # Use: Account subsets that can be exported. Type: tuple[str]. Range: Fixed.

# Store Settings
DEFAULT_TAG_COLOR = "#6f00ff"  # Use: Color assigned to tags created without one. Type: str. Range: CSS hex color.
DEFAULT_SETTINGS = {  # Use: User settings written into a fresh data file. Type: dict. Range: Keys theme, compactMode, defaultDelimiter.
    "theme": "dark",
    "compactMode": False,
    "defaultDelimiter": "|",
}
STATUS_FILTERS = ("all", "active", "completed", "favorite")  # Use: Status filters understood by account queries. Type: tuple[str]. Range: Fixed.

# Persistence Settings
CONFIG_DIR_NAME = ".credvault"  # Use: Name of the hidden directory within the user's home directory where CredVault stores its data. Type: str. Range: Any valid directory name.
DEFAULT_DATA_FILE = "credentials.json"  # Use: Default filename for the data snapshot. Type: str. Range: Any valid filename.
SAVE_DEBOUNCE_SECONDS = 0.5  # Use: Delay used to coalesce bursts of mutations into one write. Type: float. Range: 0 (write immediately) or a positive number of seconds.
EVENT_QUEUE_MAX_SIZE = 1000  # Use: Maximum number of undrained store events kept for the presentation layer; the oldest are dropped first. Type: int. Range: Positive integer.
