# Overview: Service-layer operations for staff accounts; bcrypt hashing and credential checks.

"""
Staff accounts.

Anyone who amends, cancels, refunds or adjusts stock signs in first, so
every such row carries a created_by. Sale creation is the one exception
(staff mode). Bearer tokens live in session_service.py.

Password policy: 8+ characters with an upper- and lower-case letter, a
digit and a symbol. Stored as a bcrypt hash; the cost comes from
BCRYPT_ROUNDS.
"""

import re

import bcrypt

from ..extensions import db
from ..models import User
from ..models.auth import ROLE_CASHIER, VALID_ROLES
from ..time_utils import utcnow


MIN_PASSWORD_LENGTH = 8

# (pattern, what is missing)
PASSWORD_RULES = (
    (re.compile(r"[A-Z]"), "an uppercase letter"),
    (re.compile(r"[a-z]"), "a lowercase letter"),
    (re.compile(r"\d"), "a digit"),
    (re.compile(r"[^A-Za-z0-9\s]"), "a special character"),
)


class PasswordValidationError(Exception):
    """Password does not meet the policy above."""


def validate_password_strength(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )
    for pattern, missing in PASSWORD_RULES:
        if not pattern.search(password):
            raise PasswordValidationError(f"Password must contain at least {missing}")


def hash_password(password: str, *, rounds: int = 12) -> str:
    validate_password_strength(password)
    digest = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds))
    return digest.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """bcrypt.checkpw; a malformed stored hash counts as a mismatch."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_user(
    username: str,
    email: str,
    password: str,
    role: str = ROLE_CASHIER,
    first_name: str | None = None,
    last_name: str | None = None,
    *,
    rounds: int = 12,
) -> User:
    """
    Raises ValueError for an unknown role or a taken username/email, and
    PasswordValidationError for a weak password. Commits.
    """
    if role not in VALID_ROLES:
        raise ValueError(f"Unknown role: {role}")

    taken = db.session.query(User.id).filter(
        db.or_(User.username == username, User.email == email)
    ).first()
    if taken:
        raise ValueError("Username or email already exists")

    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password, rounds=rounds),
        role=role,
        first_name=first_name,
        last_name=last_name,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(identifier: str, password: str) -> User | None:
    """Active user matching username or email and password, else None."""
    user = db.session.query(User).filter(
        db.or_(User.username == identifier, User.email == identifier),
        User.is_active.is_(True),
    ).first()
    if user is None or not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user
