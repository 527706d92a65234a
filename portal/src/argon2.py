from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

passwordHasher = PasswordHasher(encoding="utf-8")


def makePassword(password: str) -> str:
    """
    Hash a student or driver password with Argon2.

    Args:
        password (str): The plain-text password chosen by the account holder.

    Returns:
        str: The encoded Argon2 hash, stored in the `password_hash` column.
    """
    return passwordHasher.hash(password)


def checkPassword(password: str, passwordHash: str) -> bool:
    """
    Verify a login password against the stored hash.

    A hash that cannot be decoded is treated as a mismatch so that a corrupt
    row never lets a login through.

    Args:
        password (str): The plain-text password supplied at login.
        passwordHash (str): The stored Argon2 hash.

    Returns:
        bool: True if the password matches the hash, False otherwise.
    """
    try:
        return passwordHasher.verify(passwordHash, password)
    except (VerificationError, InvalidHashError):
        return False
