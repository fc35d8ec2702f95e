import logging
from datetime import datetime, timezone

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from werkzeug.security import check_password_hash, generate_password_hash

from chat_api.errors import DuplicateIdentifier, NotFound, UpstreamError
from chat_api.models import User
from chat_api.schemas import UserSummary

logger = logging.getLogger(__name__)

# Compared against when the username is unknown so both paths hash once
_DUMMY_PASSWORD_HASH = generate_password_hash("chat-api-unknown-user")


class CredentialStore:
    """
    User accounts and their salted password hashes.

    The clear-text password only ever exists as a call argument; the store
    keeps the werkzeug hash and compares against it.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def register(self, username: str, email: str, password: str) -> int:
        """
        Create a user.

        Returns:
            The new user's id

        Raises:
            DuplicateIdentifier: username or email already taken
            UpstreamError: the database failed
        """
        logger.info(f"Registering user: username={username}")

        with self._session_factory() as db:
            try:
                existing = (
                    db.query(User.id)
                    .filter(or_(User.username == username, User.email == email))
                    .first()
                )
                if existing:
                    logger.info(f"Registration rejected, duplicate identifier: username={username}")
                    raise DuplicateIdentifier()

                user = User(
                    username=username,
                    email=email,
                    password_hash=generate_password_hash(password),
                    created_at=datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
                )
                db.add(user)
                db.commit()
                logger.info(f"User registered: id={user.id}, username={username}")
                return user.id

            except IntegrityError:
                # Lost the race against a concurrent registration
                db.rollback()
                logger.info(f"Duplicate identifier on insert: username={username}")
                raise DuplicateIdentifier()

            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Failed to register user {username}: {e}")
                raise UpstreamError() from e

    def verify(self, username: str, password: str) -> bool:
        """
        Check a password against the stored hash.

        Raises:
            NotFound: no user with this username
        """
        with self._session_factory() as db:
            try:
                password_hash = (
                    db.query(User.password_hash)
                    .filter(User.username == username)
                    .scalar()
                )
            except SQLAlchemyError as e:
                logger.error(f"Failed to look up user {username}: {e}")
                raise UpstreamError() from e

        if password_hash is None:
            check_password_hash(_DUMMY_PASSWORD_HASH, password)
            raise NotFound("User not found")

        is_valid = check_password_hash(password_hash, password)
        logger.debug(f"Password check for {username}: {'match' if is_valid else 'mismatch'}")
        return is_valid

    def get_by_username(self, username: str) -> UserSummary:
        with self._session_factory() as db:
            try:
                user = db.query(User).filter(User.username == username).first()
            except SQLAlchemyError as e:
                logger.error(f"Failed to look up user {username}: {e}")
                raise UpstreamError() from e

            if user is None:
                raise NotFound("User not found")
            return UserSummary(id=user.id, username=user.username)
