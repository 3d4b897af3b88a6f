import random
import string
import time


# No 0/O, 1/I/L.
ROOM_CODE_ALPHABET = "23456789ABCDEFGHJKMNPQRSTUVWXYZ"
ROOM_CODE_LENGTH = 4

_ID_ALPHABET = string.ascii_lowercase + string.digits
_ID_SUFFIX_LENGTH = 7


def generate_room_code():
    return "".join(random.choices(ROOM_CODE_ALPHABET, k=ROOM_CODE_LENGTH))


def is_valid_room_code(code):
    if not code or not isinstance(code, str):
        return False
    # Upper-casing can change the length ("ß" -> "SS").
    upper = code.upper()
    if len(upper) != ROOM_CODE_LENGTH:
        return False
    return all(char in ROOM_CODE_ALPHABET for char in upper)


def normalize_room_code(code):
    """Canonical (upper-case) form of a room code, or None if it is malformed."""
    if not is_valid_room_code(code):
        return None
    return code.upper()


def format_room_code(code):
    return " ".join(code.upper())


def generate_participant_id():
    return _prefixed_id("p")


def generate_session_id():
    return _prefixed_id("s")


def build_join_link(code, scheme="quickpick"):
    return f"{scheme}://join/{code.upper()}"


def _prefixed_id(prefix):
    millis = int(time.time() * 1000)
    suffix = "".join(random.choices(_ID_ALPHABET, k=_ID_SUFFIX_LENGTH))
    return f"{prefix}_{millis}_{suffix}"
