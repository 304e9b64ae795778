"""
Account creation, sign-in and session tokens.

Credentials live in the private ``users`` collection and are only touched
through the service context. Tokens are signed JWTs; the role a request
runs with is always read back from the caller's profile.
"""
import asyncio
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from .config_manager import ConfigManager
from .data_manager import DataManager, Transaction
from .errors import AuthError, RecordNotFound, ValidationError
from .models import Profile, RequestContext, Role

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

REGISTRATION_NOTICE = "Registration successful! Loading your tests..."


@dataclass
class AuthSession:
    """A signed-in user: bearer token plus profile."""
    access_token: str
    profile: Profile
    token_type: str = "bearer"

    @property
    def context(self) -> RequestContext:
        return RequestContext(
            user_id=self.profile.id,
            role=self.profile.role,
            class_label=self.profile.class_label,
        )


class AuthService:
    """Signs users up and in, and turns bearer tokens into request contexts."""

    def __init__(self, data_manager: DataManager, config_manager: ConfigManager):
        self.data_manager = data_manager
        self.config_manager = config_manager

    def create_access_token(self, user_id: str, email: str, role: Role,
                            expires_delta: Optional[timedelta] = None) -> str:
        expire = datetime.now(timezone.utc) + (
            expires_delta or timedelta(minutes=self.config_manager.get_token_expire_minutes())
        )
        claims = {"sub": user_id, "email": email, "role": role.value, "exp": expire}
        return jwt.encode(
            claims,
            self.config_manager.get_secret_key(),
            algorithm=self.config_manager.get_algorithm()
        )

    async def sign_up(self, email: str, password: str, full_name: str,
                      role: Role = Role.STUDENT, class_label: Optional[str] = None) -> Profile:
        """
        Create a user and its profile in one transaction.

        Args:
            email: Login email, unique
            password: Plain password, hashed before storage
            full_name: Display name
            role: Profile role
            class_label: Student class, None for admins

        Returns:
            The new profile

        Raises:
            ValidationError: If email or password is missing
            AuthError: If the email is already registered
        """
        email = (email or "").strip().lower()
        if not email or not password:
            raise ValidationError("Email and password are required")

        password_hash = await asyncio.to_thread(pwd_context.hash, password)

        def create(tx: Transaction) -> dict:
            if tx.select("users", {"email": email}, limit=1):
                raise AuthError(f"Email already registered: {email}", "User already registered")
            user = tx.insert("users", [{"email": email, "password_hash": password_hash}])[0]
            return tx.insert("profiles", [{
                "id": user["id"],
                "full_name": (full_name or "").strip() or "User",
                "role": role,
                "class_label": class_label,
            }])[0]

        profile = Profile.from_row(
            await self.data_manager.transaction(RequestContext.service(), create, label="sign_up")
        )
        logger.info(
            f"Registered {profile.role.value} {profile.id}",
            extra={
                'event_type': 'user_registered',
                'user_id': profile.id,
                'role': profile.role.value,
                'class_label': profile.class_label,
            }
        )
        return profile

    async def register_student(self, full_name: str, class_label: str) -> AuthSession:
        """
        Register a student by name and class only and sign them straight in.

        A throwaway email and password are generated for the account.

        Raises:
            ValidationError: If a field is missing or the class is unknown
        """
        full_name = (full_name or "").strip()
        class_label = (class_label or "").strip()
        if not full_name or not class_label:
            raise ValidationError("Please fill in all fields")
        if not self.config_manager.is_valid_class_label(class_label):
            raise ValidationError(f"Unknown class: {class_label}", "Please select a valid class")

        email = f"student_{secrets.token_hex(5)}@cbt.local"
        password = secrets.token_urlsafe(12)
        await self.sign_up(email, password, full_name, Role.STUDENT, class_label)
        return await self.sign_in(email, password)

    async def sign_in(self, email: str, password: str) -> AuthSession:
        """
        Check credentials and issue a session token.

        Raises:
            AuthError: If the email is unknown or the password is wrong
        """
        email = (email or "").strip().lower()
        users = await self.data_manager.select(RequestContext.service(), "users", {"email": email}, limit=1)
        user = users[0] if users else None

        verified = user is not None and await asyncio.to_thread(
            pwd_context.verify, password or "", user["password_hash"]
        )
        if not verified:
            logger.warning(
                "Rejected sign-in attempt",
                extra={'event_type': 'sign_in_rejected', 'email': email}
            )
            raise AuthError(f"Invalid credentials for {email}")

        ctx = RequestContext(user_id=user["id"])
        profile = Profile.from_row(await self.data_manager.select_one(ctx, "profiles", {"id": user["id"]}))
        token = self.create_access_token(user["id"], email, profile.role)
        logger.info(f"Signed in {profile.role.value} {profile.id}", extra={'event_type': 'sign_in'})
        return AuthSession(access_token=token, profile=profile)

    async def resolve(self, token: str) -> RequestContext:
        """
        Turn a bearer token into the caller's request context.

        Raises:
            AuthError: If the token is invalid, expired, or its user has no profile
        """
        try:
            payload = jwt.decode(
                token,
                self.config_manager.get_secret_key(),
                algorithms=[self.config_manager.get_algorithm()]
            )
        except JWTError as e:
            raise AuthError(f"Invalid token: {e}", "Session expired, please sign in again") from e

        user_id = payload.get("sub")
        if not user_id:
            raise AuthError("Token has no subject", "Session expired, please sign in again")

        try:
            profile = Profile.from_row(
                await self.data_manager.select_one(RequestContext(user_id=user_id), "profiles", {"id": user_id})
            )
        except RecordNotFound as e:
            raise AuthError(f"No profile for user {user_id}", "Session expired, please sign in again") from e

        return RequestContext(user_id=profile.id, role=profile.role, class_label=profile.class_label)

    async def get_profile(self, ctx: RequestContext) -> Profile:
        return Profile.from_row(await self.data_manager.select_one(ctx, "profiles", {"id": ctx.user_id}))

    async def ensure_admin(self, email: str, password: str, full_name: str = "Administrator") -> bool:
        """
        Create the admin account if no user has this email yet.

        Returns:
            True if the account was created
        """
        email = email.strip().lower()
        existing = await self.data_manager.select(RequestContext.service(), "users", {"email": email}, limit=1)
        if existing:
            logger.debug(f"Admin {email} already exists")
            return False

        await self.sign_up(email, password, full_name, Role.ADMIN)
        logger.info(f"Bootstrapped admin account {email}", extra={'event_type': 'admin_bootstrapped'})
        return True
