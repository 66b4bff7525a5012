from __future__ import annotations

import logging

import bcrypt
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from storefront.domain.models import EmployeeCreate, Identity, RegisterRequest, User
from storefront.domain.permissions import Role, UserType

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 12


class IdentityError(Exception):
    pass


class NotFoundError(IdentityError):
    pass


class ConflictError(IdentityError):
    pass


class AuthError(IdentityError):
    pass


class AccountDisabledError(AuthError):
    pass


class IdentityService:
    def __init__(self, engine: Engine, *, bcrypt_rounds: int = BCRYPT_ROUNDS) -> None:
        self.engine = engine
        self.bcrypt_rounds = bcrypt_rounds

    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    def _hash_password(self, raw_password: str) -> str:
        hashed = bcrypt.hashpw(raw_password.encode("utf-8"), bcrypt.gensalt(rounds=self.bcrypt_rounds))
        return hashed.decode("utf-8")

    def _check_password(self, raw_password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(raw_password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            return False

    def _get_by_email(self, session: Session, email: str) -> User | None:
        statement = select(User).where(User.email == email.strip().lower())
        return session.exec(statement).first()

    def _create(self, email: str, password: str, full_name: str, role: Role, user_type: UserType) -> User:
        with self._session() as session:
            user = User(
                email=email.strip().lower(),
                password_hash=self._hash_password(password),
                full_name=full_name,
                role=role.value,
                user_type=user_type.value,
                is_active=True,
            )
            session.add(user)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("email already registered") from exc
            session.refresh(user)
            return user

    def register_customer(self, payload: RegisterRequest) -> User:
        return self._create(payload.email, payload.password, payload.full_name, Role.CUSTOMER, UserType.CUSTOMER)

    def create_employee(self, payload: EmployeeCreate) -> User:
        if payload.role is Role.CUSTOMER:
            raise ConflictError("employees cannot hold the Customer role")
        return self._create(payload.email, payload.password, payload.full_name, payload.role, UserType.EMPLOYEE)

    def authenticate(self, email: str, password: str) -> User:
        with self._session() as session:
            user = self._get_by_email(session, email)
        if user is None or not self._check_password(password, user.password_hash):
            raise AuthError("invalid email or password")
        if not user.is_active:
            logger.info("login refused for deactivated account user_id=%s", user.id)
            raise AccountDisabledError("Account is deactivated")
        return user

    def get_user(self, user_id: int) -> User:
        with self._session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("user not found")
            return user

    def current_identity(self, user_id: int) -> Identity:
        """Re-read the account so refreshed tokens carry today's role."""
        user = self.get_user(user_id)
        if not user.is_active:
            raise AccountDisabledError("Account is deactivated")
        return Identity.from_user(user)

    def list_users(self, user_type: UserType | None = None) -> list[User]:
        with self._session() as session:
            statement = select(User).order_by(User.id)
            if user_type is not None:
                statement = statement.where(User.user_type == user_type.value)
            return list(session.exec(statement).all())

    def set_active(self, user_id: int, is_active: bool) -> User:
        with self._session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("user not found")
            user.is_active = is_active
            session.add(user)
            session.commit()
            session.refresh(user)
            return user
