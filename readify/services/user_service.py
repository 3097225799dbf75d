import logging
import re
import secrets
import uuid
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlencode

from werkzeug.security import check_password_hash, generate_password_hash

from readify import config
from readify.database import DatabaseManager, to_dict
from readify.errors import AccessDenied, AuthError, ConflictError, NotFound, ValidationError
from readify.services.document_store import DocumentStore, require_session, utc_now_iso
from readify.services.email_service import send_welcome_email
from readify.session import Session

logger = logging.getLogger(__name__)

USERNAME_RE = re.compile(r"^[a-z0-9_.]+$")


def user_email_key(email: str) -> str:
    return f"user:{email}"


def user_id_key(user_id: str) -> str:
    return f"user-by-id:{user_id}"


def username_key(username: str) -> str:
    return f"username:{username}"


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in user.items() if k != "password"}


def hash_password(password: str) -> str:
    return generate_password_hash(password, method=config.PASSWORD_HASH_METHOD)


class UserService:
    """
    Accounts in the key-value store. Every user record is written under
    both user:<email> and user-by-id:<id>, always in the same transaction.
    """

    def __init__(self, db: DatabaseManager, documents: DocumentStore, send_email: Callable[..., Any] = send_welcome_email):
        self.db = db
        self.documents = documents
        self.send_email = send_email

    # --- Lookups ---

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        return to_dict(self.db.get(user_id_key(user_id)))

    def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return to_dict(self.db.get(user_email_key(normalize_email(email))))

    def _write_user(self, user: Dict[str, Any], pipeline=None):
        if pipeline is not None:
            pipeline.set(user_email_key(user["email"]), user)
            pipeline.set(user_id_key(user["id"]), user)
            return
        with self.db.pipeline() as p:
            self._write_user(user, p)

    def _new_user(self, email: str, password: str, is_admin: bool, name: Optional[str] = None) -> Dict[str, Any]:
        return {
            "id": str(uuid.uuid4()),
            "email": email,
            "name": name or None,
            "username": None,
            "password": hash_password(password),
            "isAdmin": bool(is_admin),
            "createdAt": utc_now_iso(),
        }

    # --- Auth ---

    def signup(self, email: Optional[str], password: Optional[str], name: Optional[str] = None) -> Dict[str, Any]:
        email = normalize_email(email)
        if not email or not password:
            raise ValidationError("Email and password are required")
        if self.get_user_by_email(email) is not None:
            raise ConflictError("User already exists")

        is_admin = bool(config.ADMIN_EMAIL) and email == config.ADMIN_EMAIL
        user = self._new_user(email, password, is_admin, name=name)
        self._write_user(user)
        logger.info(f"[AUTH] signup {email} admin={is_admin}")
        return public_user(user)

    def login(self, email: Optional[str], password: Optional[str]) -> Dict[str, Any]:
        """
        Verifies credentials and returns the public user record.
        The admin account is created by its first successful login when it
        does not exist yet.
        """
        email = normalize_email(email)
        if not email or not password:
            raise AuthError("Invalid credentials")

        user = self.get_user_by_email(email)
        if user is None and config.ADMIN_EMAIL and email == config.ADMIN_EMAIL:
            user = self._new_user(email, password, is_admin=True, name="Admin")
            self._write_user(user)
            logger.info(f"[AUTH] bootstrapped admin account {email}")
            return public_user(user)

        if user is None:
            logger.info(f"[AUTH] Login attempt failed: User not found for email {email}")
            raise AuthError("Invalid credentials")
        if not check_password_hash(user.get("password") or "", password):
            logger.info(f"[AUTH] Login attempt failed: Password mismatch for email {email}")
            raise AuthError("Invalid credentials")
        return public_user(user)

    # --- Account ---

    def _session_user(self, session: Optional[Session]) -> Dict[str, Any]:
        session = require_session(session)
        user = self.get_user(session.user_id)
        if user is None:
            raise NotFound("User not found.")
        return user

    def change_password(self, session: Optional[Session], current_password: Optional[str], new_password: Optional[str]) -> Dict[str, Any]:
        if not current_password or not new_password:
            raise ValidationError("All fields are required.")
        user = self._session_user(session)
        if not check_password_hash(user.get("password") or "", current_password):
            raise AuthError("Incorrect current password.")
        self._write_user({**user, "password": hash_password(new_password)})
        return {"success": True}

    def set_username(self, session: Optional[Session], username: Optional[str]) -> Dict[str, Any]:
        username = (username or "").strip()
        if (
            not USERNAME_RE.match(username)
            or not (config.USERNAME_MIN_LEN <= len(username) <= config.USERNAME_MAX_LEN)
        ):
            raise ValidationError("Invalid username format.")
        user = self._session_user(session)

        with self.db.pipeline() as p:
            # re-read under the write lock; the claim and the record change together
            user = to_dict(p.get(user_id_key(user["id"]))) or user
            if user.get("username"):
                raise ValidationError("Username is already set and cannot be changed.")
            if not p.setnx(username_key(username), user["id"]):
                raise ConflictError("Username is already taken.")
            updated = {**user, "username": username}
            self._write_user(updated, p)
        return public_user(updated)

    # --- Admin ---

    def _require_admin(self, session: Optional[Session]) -> Session:
        session = require_session(session)
        if not session.is_admin:
            raise AccessDenied("Unauthorized: Admin access required.")
        return session

    def list_users(self, session: Optional[Session]) -> List[Dict[str, Any]]:
        self._require_admin(session)
        keys = self.db.keys("user-by-id:*")
        if not keys:
            return []
        users = [u for u in (to_dict(r) for r in self.db.mget(*keys)) if u is not None]
        users.sort(key=lambda u: u.get("createdAt") or "", reverse=True)
        return [public_user(u) for u in users]

    def create_user(self, session: Optional[Session], email: Optional[str], name: Optional[str] = None,
                    password: Optional[str] = None, send_email: bool = True) -> Dict[str, Any]:
        """Admin-created account. Without a password a random one is set and the welcome mail carries the login link."""
        self._require_admin(session)
        email = normalize_email(email)
        if not email:
            raise ValidationError("Email is required.")
        if self.get_user_by_email(email) is not None:
            raise ConflictError("User already exists")

        user = self._new_user(email, password or secrets.token_urlsafe(16), is_admin=False, name=name)
        self._write_user(user)
        logger.info(f"[ADMIN] created user {email}")

        if send_email:
            setup_link = f"{config.APP_BASE_URL}/login?{urlencode({'email': email})}"
            self.send_email(email, name or email, setup_link)
        return public_user(user)

    def delete_user(self, session: Optional[Session], user_id: str) -> Dict[str, Any]:
        self._require_admin(session)
        user = self.get_user(user_id)
        if user is None:
            raise NotFound("User not found")
        if user.get("isAdmin"):
            raise ValidationError("Cannot delete an admin user.")

        with self.db.pipeline() as p:
            deleted = self.documents.delete_user_documents(user_id, pipeline=p)
            p.delete(user_id_key(user_id), user_email_key(user["email"]))
            if user.get("username"):
                p.delete(username_key(user["username"]))
        logger.info(f"[ADMIN] deleted user {user['email']} and {len(deleted)} documents")
        return {"success": True, "deletedDocuments": len(deleted)}

    def create_admin(self, email: str, password: str, name: Optional[str] = None) -> Dict[str, Any]:
        """Command-line bootstrap. Refuses to touch an existing account."""
        email = normalize_email(email)
        if not email or not password:
            raise ValidationError("Email and password are required")
        if self.get_user_by_email(email) is not None:
            raise ConflictError(f"User with email {email} already exists.")
        user = self._new_user(email, password, is_admin=True, name=name)
        self._write_user(user)
        return public_user(user)
