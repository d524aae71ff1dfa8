"""
Domain layer housing path rules and the value objects shared by the store services.
"""

from typing import Final

SEPARATOR: Final[str] = "/"
ROOT_DIRECTORY: Final[str] = "/"
# S3 rejects keys longer than this many UTF-8 bytes
MAX_KEY_BYTES: Final[int] = 1024
