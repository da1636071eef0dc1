"""
Purpose: Public tracking ids.
Ten random characters from A-Z0-9 (36^10 ids). Ids are random, not counted,
so the dispatcher checks for collisions and retries.
"""

import secrets
import string

TRACKING_ID_ALPHABET = string.ascii_uppercase + string.digits
TRACKING_ID_LENGTH = 10


def generate_tracking_id(length: int = TRACKING_ID_LENGTH) -> str:
    return "".join(secrets.choice(TRACKING_ID_ALPHABET) for _ in range(length))


def is_tracking_id(value: str) -> bool:
    return (
        isinstance(value, str)
        and len(value) == TRACKING_ID_LENGTH
        and all(char in TRACKING_ID_ALPHABET for char in value)
    )
