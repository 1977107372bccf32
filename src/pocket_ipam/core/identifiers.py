from __future__ import annotations

import re
import secrets
import string

ID_LETTERS = string.ascii_uppercase
ID_DIGITS = string.digits
ID_PATTERN = re.compile(r"^[A-Z]{3}[0-9]{3}$")

# Candidates drawn before allocation gives up. With 17,576,000 codes this is
# only reached when the store keeps failing or is nearly full.
MAX_ID_ATTEMPTS = 64


def new_id() -> str:
    """Return a short record code: three letters followed by three digits, e.g. ``KQD042``."""
    letters = "".join(secrets.choice(ID_LETTERS) for _ in range(3))
    digits = "".join(secrets.choice(ID_DIGITS) for _ in range(3))
    return letters + digits


def is_valid_id(value: str) -> bool:
    return bool(ID_PATTERN.match(value))
