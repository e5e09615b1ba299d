import secrets
import string


ALPHABET = string.digits + string.ascii_lowercase + string.ascii_uppercase
SIZE = 12


def nanoid(size: int = SIZE) -> str:
    # Row ids never contain "_" so they stay unambiguous inside instance keys.
    return "".join(secrets.choice(ALPHABET) for _ in range(size))
