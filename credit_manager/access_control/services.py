import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from credit_manager.concurrency import user_locks
from credit_manager.config import Config
from credit_manager.exceptions import AuthenticationError, NotFoundError, ValidationError
from credit_manager.utils import utcnow

from . import models, schemas
from .permissions import coerce_role, default_permissions
from .security import get_password_hash, verify_password

logger = logging.getLogger("credit_manager.auth")
security_logger = logging.getLogger("credit_manager.security")


def is_locked(user: models.User, now: Optional[datetime] = None) -> bool:
    return bool(user.lock_until and user.lock_until > (now or utcnow()))


class UserService:
    def __init__(self, max_login_attempts: int = Config.MAX_LOGIN_ATTEMPTS,
                 lock_minutes: int = Config.ACCOUNT_LOCK_MINUTES):
        self.max_login_attempts = max_login_attempts
        self.lock_minutes = lock_minutes

    def get_user(self, db: Session, user_id: int) -> Optional[models.User]:
        return db.query(models.User).filter(models.User.id == user_id).first()

    def get_user_or_404(self, db: Session, user_id: int) -> models.User:
        user = self.get_user(db, user_id)
        if not user:
            raise NotFoundError(f"User {user_id} not found")
        return user

    def get_user_by_login(self, db: Session, login: str) -> Optional[models.User]:
        return db.query(models.User).filter(
            or_(models.User.username == login, models.User.email == login.lower())
        ).first()

    def register_user(self, db: Session, user_in: schemas.UserCreate) -> models.User:
        email = user_in.email.lower()
        existing = db.query(models.User).filter(
            or_(models.User.username == user_in.username, models.User.email == email)
        ).first()
        if existing:
            raise ValidationError("User with this username or email already exists")

        role = coerce_role(user_in.role.value)
        db_user = models.User(
            username=user_in.username,
            email=email,
            first_name=user_in.first_name,
            last_name=user_in.last_name,
            department=user_in.department,
            hashed_password=get_password_hash(user_in.password),
            role=role,
        )
        db_user.permissions = default_permissions(role) # grants fixed at creation time
        db.add(db_user)
        db.commit()
        db.refresh(db_user)
        logger.info(f"User registered: {db_user.username} (role={role.value})")
        return db_user

    def authenticate(self, db: Session, login: str, password: str, now: Optional[datetime] = None) -> models.User:
        user = self.get_user_by_login(db, login)
        if not user:
            security_logger.warning(f"Login attempt for unknown user '{login}'")
            raise AuthenticationError("Invalid credentials")

        # Attempt counters for one user are updated one request at a time
        with user_locks.hold(user.id):
            db.refresh(user)
            now = now or utcnow()

            if is_locked(user, now):
                security_logger.warning(f"Login attempt on locked account {user.username}")
                raise AuthenticationError("Account temporarily locked due to too many failed login attempts")

            if not user.is_active:
                raise AuthenticationError("Account is deactivated")

            if not verify_password(password, user.hashed_password):
                self._register_failed_login(db, user, now)
                raise AuthenticationError("Invalid credentials")

            user.login_attempts = 0
            user.lock_until = None
            user.last_login_at = now
            db.commit()
            db.refresh(user)

        logger.info(f"User logged in: {user.username}")
        return user

    def _register_failed_login(self, db: Session, user: models.User, now: datetime):
        if user.lock_until and user.lock_until <= now:
            # Previous lock has expired, start counting again
            user.login_attempts = 1
            user.lock_until = None
        else:
            user.login_attempts = (user.login_attempts or 0) + 1

        if user.login_attempts >= self.max_login_attempts and not is_locked(user, now):
            user.lock_until = now + timedelta(minutes=self.lock_minutes)
            security_logger.warning(
                f"Account {user.username} locked after {user.login_attempts} failed attempts"
            )
        db.commit()

    def update_profile(self, db: Session, user: models.User, profile_in: schemas.UserProfileUpdate) -> models.User:
        update_data = profile_in.model_dump(exclude_unset=True)
        if not update_data:
            raise ValidationError("No valid fields provided for update")

        if "email" in update_data and update_data["email"]:
            email = update_data["email"].lower()
            clash = db.query(models.User).filter(models.User.email == email, models.User.id != user.id).first()
            if clash:
                raise ValidationError("Email already in use")
            update_data["email"] = email

        for key, value in update_data.items():
            setattr(user, key, value)
        db.commit()
        db.refresh(user)
        logger.info(f"Profile updated for {user.username}: {sorted(update_data)}")
        return user

    def change_password(self, db: Session, user: models.User, change_in: schemas.PasswordChangeRequest) -> models.User:
        if not verify_password(change_in.current_password, user.hashed_password):
            security_logger.warning(f"Failed password change for {user.username}: wrong current password")
            raise AuthenticationError("Current password is incorrect")
        user.hashed_password = get_password_hash(change_in.new_password)
        db.commit()
        db.refresh(user)
        logger.info(f"Password changed for {user.username}")
        return user


user_service = UserService()
