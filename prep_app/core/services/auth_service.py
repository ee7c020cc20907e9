"""Account registration, login and bearer-token verification."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from threading import Lock
from typing import Any
from uuid import uuid4

import bcrypt
import jwt

from prep_app.constants.messages import INVALID_CREDENTIALS_MESSAGE
from prep_app.core.models import utc_now
from prep_app.core.services.storage_gateway import KeyValueStore

logger = logging.getLogger(__name__)

USERS_KEY = "users"
MIN_PASSWORD_LENGTH = 6
_MAX_PASSWORD_BYTES = 72  # bcrypt only reads the first 72 bytes
_BCRYPT_ROUNDS = 10
_JWT_ALGORITHM = "HS256"


class AuthError(Exception):
    """Authentication failure carrying the HTTP status it maps to."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


@dataclass(slots=True)
class UserAccount:
    id: str
    name: str
    email: str
    password_hash: str
    created_at: datetime

    def public_view(self) -> dict[str, str]:
        return {"id": self.id, "name": self.name, "email": self.email}


@dataclass(slots=True, frozen=True)
class TokenIdentity:
    id: str
    email: str
    name: str

    def as_dict(self) -> dict[str, str]:
        return {"id": self.id, "email": self.email, "name": self.name}


class AuthService:
    """Stores accounts next to the library data and issues signed tokens."""

    def __init__(self, store: KeyValueStore, secret: str, token_ttl: timedelta = timedelta(days=7)) -> None:
        if not secret:
            raise ValueError("A token signing secret is required.")
        self._store = store
        self._secret = secret
        self._token_ttl = token_ttl
        self._lock = Lock()

    def register(self, name: str, email: str, password: str) -> tuple[UserAccount, str]:
        name = (name or "").strip()
        email = (email or "").strip().lower()
        if not name or not email or not password:
            raise AuthError(400, "All fields are required")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise AuthError(400, f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        if len(password.encode("utf-8")) > _MAX_PASSWORD_BYTES:
            raise AuthError(400, f"Password must be at most {_MAX_PASSWORD_BYTES} bytes")

        password_hash = bcrypt.hashpw(
            password.encode("utf-8"), bcrypt.gensalt(rounds=_BCRYPT_ROUNDS)
        ).decode("ascii")

        with self._lock:
            users = self._raw_users()
            if any(str(raw.get("email", "")).lower() == email for raw in users):
                raise AuthError(400, "Email already registered")
            account = UserAccount(
                id=f"user_{uuid4().hex}",
                name=name,
                email=email,
                password_hash=password_hash,
                created_at=utc_now(),
            )
            users.append(_account_to_raw(account))
            self._store.set(USERS_KEY, users)

        logger.info("Registered account %s", account.id)
        return account, self.issue_token(account)

    def login(self, email: str, password: str) -> tuple[UserAccount, str]:
        email = (email or "").strip().lower()
        if not email or not password:
            raise AuthError(400, "Email and password are required")

        account = self.find_by_email(email)
        if account is None or not _password_matches(password, account.password_hash):
            logger.info("Failed login attempt for %s", email)
            raise AuthError(401, INVALID_CREDENTIALS_MESSAGE)
        return account, self.issue_token(account)

    def issue_token(self, account: UserAccount) -> str:
        payload = {
            "id": account.id,
            "email": account.email,
            "name": account.name,
            "exp": utc_now() + self._token_ttl,
        }
        return jwt.encode(payload, self._secret, algorithm=_JWT_ALGORITHM)

    def verify_token(self, token: str | None) -> TokenIdentity:
        if not token:
            raise AuthError(401, "Access token required")
        try:
            claims = jwt.decode(token, self._secret, algorithms=[_JWT_ALGORITHM])
        except jwt.InvalidTokenError as exc:
            logger.info("Rejected token: %s", exc)
            raise AuthError(403, "Invalid or expired token") from exc
        try:
            return TokenIdentity(id=str(claims["id"]), email=str(claims["email"]), name=str(claims["name"]))
        except KeyError as exc:
            raise AuthError(403, "Invalid or expired token") from exc

    def find_by_email(self, email: str) -> UserAccount | None:
        email = email.strip().lower()
        for raw in self._raw_users():
            if str(raw.get("email", "")).lower() == email:
                return _account_from_raw(raw)
        return None

    def _raw_users(self) -> list[dict[str, Any]]:
        users = self._store.get(USERS_KEY, [])
        if not isinstance(users, list):
            logger.warning("Stored users are not a list; treating as empty.")
            return []
        return [raw for raw in users if isinstance(raw, dict)]


def _password_matches(password: str, password_hash: str) -> bool:
    encoded = password.encode("utf-8")
    if len(encoded) > _MAX_PASSWORD_BYTES:
        return False
    try:
        return bcrypt.checkpw(encoded, password_hash.encode("ascii"))
    except ValueError:
        logger.warning("Stored password hash is malformed.")
        return False


def _account_to_raw(account: UserAccount) -> dict[str, Any]:
    return {
        "id": account.id,
        "name": account.name,
        "email": account.email,
        "password": account.password_hash,
        "createdAt": account.created_at.isoformat(),
    }


def _account_from_raw(raw: dict[str, Any]) -> UserAccount:
    created_raw = raw.get("createdAt")
    try:
        created_at = datetime.fromisoformat(created_raw) if created_raw else utc_now()
    except ValueError:
        created_at = utc_now()
    return UserAccount(
        id=str(raw.get("id", "")),
        name=str(raw.get("name", "")),
        email=str(raw.get("email", "")),
        password_hash=str(raw.get("password", "")),
        created_at=created_at,
    )
