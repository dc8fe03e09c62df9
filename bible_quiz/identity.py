"""
Local identity provider: email/password accounts plus federated sign-in.
"""
import json
import logging
import os
import secrets
import time
import uuid
from pathlib import Path
from typing import Any, Dict, Optional

from werkzeug.security import check_password_hash, generate_password_hash

from .repository import IdentityProvider

logger = logging.getLogger(__name__)


class AuthenticationError(Exception):
    """Raised when an identity operation fails; the message is safe to show users."""
    pass


class LocalIdentityProvider(IdentityProvider):
    """Accounts stored in a JSON file with salted password hashes."""

    FEDERATED_PROVIDERS = ("google", "apple")
    MIN_PASSWORD_LENGTH = 6
    RESET_TOKEN_TTL = 60 * 60  # seconds

    def __init__(self, accounts_path: str = "./data/accounts.json"):
        self.accounts_path = Path(accounts_path)
        self._accounts: Dict[str, Dict[str, Any]] = {}  # uid -> account
        self._reset_tokens: Dict[str, Dict[str, Any]] = {}  # token -> {uid, expires}
        self._current_uid: Optional[str] = None
        self._load()

    def _load(self) -> None:
        if not self.accounts_path.exists():
            return
        try:
            with open(self.accounts_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            for account in data.get("accounts", []):
                self._accounts[account["uid"]] = account
            logger.info(f"Loaded {len(self._accounts)} accounts")
        except (OSError, json.JSONDecodeError, KeyError, AttributeError) as e:
            logger.error(f"Failed to load accounts from {self.accounts_path}: {e}")

    def _save(self) -> None:
        temp_path = self.accounts_path.with_suffix(".json.tmp")
        try:
            self.accounts_path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, 'w', encoding='utf-8') as f:
                json.dump({"accounts": list(self._accounts.values())}, f, indent=2)
            os.replace(temp_path, self.accounts_path)
        except OSError as e:
            logger.error(f"Failed to save accounts: {e}")
            raise AuthenticationError("Account storage is unavailable. Please try again.") from e

    def _find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        email = (email or "").strip().lower()
        for account in self._accounts.values():
            if account.get("email") == email:
                return account
        return None

    @staticmethod
    def _public(account: Dict[str, Any]) -> Dict[str, Any]:
        return {
            'uid': account["uid"],
            'email': account.get("email"),
            'display_name': account.get("display_name", ""),
            'provider': account.get("provider", "password"),
        }

    def _check_password(self, password: str) -> None:
        if not isinstance(password, str) or len(password) < self.MIN_PASSWORD_LENGTH:
            raise AuthenticationError(
                f"Password must be at least {self.MIN_PASSWORD_LENGTH} characters."
            )

    def sign_up(self, email: str, password: str, display_name: str = "") -> Dict[str, Any]:
        email = (email or "").strip().lower()
        if "@" not in email:
            raise AuthenticationError("Please enter a valid email address.")
        self._check_password(password)
        if self._find_by_email(email):
            raise AuthenticationError("Registration failed. This email might already be in use.")

        account = {
            "uid": uuid.uuid4().hex,
            "email": email,
            "display_name": display_name or email.split("@")[0],
            "password_hash": generate_password_hash(password),
            "provider": "password",
        }
        self._accounts[account["uid"]] = account
        self._save()
        self._current_uid = account["uid"]
        logger.info(f"Created account {account['uid']}")
        return self._public(account)

    def sign_in(self, email: str, password: str) -> Dict[str, Any]:
        account = self._find_by_email(email)
        if (
            account is None
            or not account.get("password_hash")
            or not check_password_hash(account["password_hash"], password or "")
        ):
            logger.warning("Failed sign-in attempt")
            raise AuthenticationError("Invalid email or password. Please try again.")
        self._current_uid = account["uid"]
        logger.info(f"Account {account['uid']} signed in")
        return self._public(account)

    def sign_out(self) -> None:
        if self._current_uid:
            logger.info(f"Account {self._current_uid} signed out")
        self._current_uid = None

    def send_password_reset(self, email: str) -> str:
        account = self._find_by_email(email)
        if account is None:
            raise AuthenticationError("Failed to send password reset email. Please try again.")
        token = secrets.token_urlsafe(24)
        self._reset_tokens[token] = {
            "uid": account["uid"],
            "expires": time.time() + self.RESET_TOKEN_TTL,
        }
        # No mail integration: the bot operator passes the token on from the log
        logger.info(f"Password reset token for account {account['uid']} ({account['email']}): {token}")
        return token

    def confirm_password_reset(self, token: str, new_password: str) -> None:
        entry = self._reset_tokens.pop(token, None)
        if entry is None or entry["expires"] < time.time():
            raise AuthenticationError("This password reset link is invalid or has expired.")
        self._check_password(new_password)
        account = self._accounts.get(entry["uid"])
        if account is None:
            raise AuthenticationError("This password reset link is invalid or has expired.")
        account["password_hash"] = generate_password_hash(new_password)
        self._save()
        logger.info(f"Password reset completed for account {account['uid']}")

    def _require_current(self) -> Dict[str, Any]:
        account = self._accounts.get(self._current_uid) if self._current_uid else None
        if account is None:
            raise AuthenticationError("You need to sign in first.")
        return account

    def update_password(self, new_password: str) -> None:
        account = self._require_current()
        self._check_password(new_password)
        account["password_hash"] = generate_password_hash(new_password)
        self._save()
        logger.info(f"Password updated for account {account['uid']}")

    def update_display_name(self, display_name: str) -> Dict[str, Any]:
        account = self._require_current()
        if not display_name or not display_name.strip():
            raise AuthenticationError("Display name cannot be empty.")
        account["display_name"] = display_name.strip()
        self._save()
        return self._public(account)

    def federated_sign_in(self, provider: str, profile: Dict[str, Any]) -> Dict[str, Any]:
        """
        Sign in with claims already verified by an external provider.

        Args:
            provider: "google" or "apple"
            profile: Verified claims with "sub" and optionally "email" and "name"
        """
        provider = (provider or "").lower()
        if provider not in self.FEDERATED_PROVIDERS:
            raise AuthenticationError(f"Unsupported sign-in provider: {provider}")
        subject = profile.get("sub") if isinstance(profile, dict) else None
        if not subject:
            raise AuthenticationError("Failed to login. Please try again.")

        for account in self._accounts.values():
            if account.get("provider") == provider and account.get("subject") == subject:
                break
        else:
            email = (profile.get("email") or "").strip().lower() or None
            account = {
                "uid": uuid.uuid4().hex,
                "email": email,
                "display_name": profile.get("name") or (email.split("@")[0] if email else "Player"),
                "provider": provider,
                "subject": subject,
            }
            self._accounts[account["uid"]] = account
            self._save()
            logger.info(f"Created {provider} account {account['uid']}")

        self._current_uid = account["uid"]
        return self._public(account)

    def has_accounts(self) -> bool:
        return bool(self._accounts)

    @property
    def current_user(self) -> Optional[Dict[str, Any]]:
        account = self._accounts.get(self._current_uid) if self._current_uid else None
        return self._public(account) if account else None
