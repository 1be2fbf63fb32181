"""
Request handling logic for users and books.

Routes in ``api.main`` stay thin: they parse the request, call one of these
services and render the result. Validation happens here, before any
persistence call.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog
from fastapi.concurrency import run_in_threadpool

from api.database import BookStore, UserStore, is_valid_object_id
from api.errors import (
    BookNotFoundError, IncorrectPasswordError, InvalidEmailError,
    InvalidIdentifierError, MissingFieldError, PasswordTooLongError, PersistenceError,
    UserNotFoundError
)
from api.models import BookRecord, TokenResponse, UserRecord, UserRole
from api.permissions import authorize, ownership_filter
from api.security import TokenManager, hash_password, password_fits, verify_password

logger = structlog.get_logger(__name__)

EMAIL_PATTERN = re.compile(r"((?!\.)[\w\-_.]*[^.\s@])(@\w+)(\.\w+(\.\w+)?[^.\W])")

BOOK_FIELDS = ("title", "author")


def validate_email(email: str) -> bool:
    """Check an email address against the accepted grammar."""
    return EMAIL_PATTERN.fullmatch(email) is not None


def _require(value: Optional[str], message: str) -> str:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise MissingFieldError(message)
    return value


def _validate_credentials(email: Optional[str], password: Optional[str]) -> None:
    _require(email, "Email not provided")
    if not validate_email(email):
        raise InvalidEmailError()
    _require(password, "Password not provided")
    if not password_fits(password):
        raise PasswordTooLongError()


class UserService:
    """Registration, login and token refresh."""

    def __init__(self, users: UserStore, tokens: TokenManager, bcrypt_rounds: int = 12):
        self.users = users
        self.tokens = tokens
        self.bcrypt_rounds = bcrypt_rounds

    async def register(
        self,
        email: Optional[str],
        password: Optional[str],
        role: UserRole = UserRole.USER
    ) -> UserRecord:
        """
        Create a user after validating the credentials.

        Raises:
            MissingFieldError: Email or password absent
            InvalidEmailError: Email does not match the grammar
            PasswordTooLongError: Password longer than 72 UTF-8 bytes
            DuplicateEmailError: Email already registered
        """
        _validate_credentials(email, password)
        password_hash = await run_in_threadpool(hash_password, password, rounds=self.bcrypt_rounds)
        user = await self.users.create_user(email, password_hash, role)
        logger.info("User registered", user_id=user.id, role=user.role.value)
        return user

    async def create_admin(self, email: Optional[str], password: Optional[str]) -> UserRecord:
        """Register a user with the admin role."""
        # Open endpoint: nothing gates who may call it
        logger.warning("Admin account requested", email=email)
        return await self.register(email, password, role=UserRole.ADMIN)

    async def login(self, email: Optional[str], password: Optional[str]) -> TokenResponse:
        """
        Exchange credentials for a bearer token.

        Raises:
            UserNotFoundError: No user with that email
            IncorrectPasswordError: Password does not match the stored hash
        """
        _require(email, "Email not provided")
        _require(password, "Password not provided")

        user = await self.users.get_user_by_email(email)
        if user is None:
            logger.warning("Login for unknown email", email=email)
            raise UserNotFoundError.for_email(email)

        if not await run_in_threadpool(verify_password, password, user.password_hash):
            logger.warning("Incorrect password", user_id=user.id)
            raise IncorrectPasswordError()

        return TokenResponse(email=user.email, token=self.tokens.issue_token(user.email))

    def refresh_token(self, user: UserRecord) -> TokenResponse:
        """Reissue a token for an already authenticated user."""
        return TokenResponse(email=user.email, token=self.tokens.issue_token(user.email))

    async def list_users(self) -> List[UserRecord]:
        return await self.users.list_users()


class BookService:
    """Book CRUD under the ownership rule."""

    def __init__(self, books: BookStore):
        self.books = books

    async def _resolve(self, user: UserRecord, book_id: str) -> BookRecord:
        # Existence is checked before ownership, so a missing book is a 404 for everyone
        if not is_valid_object_id(book_id):
            raise InvalidIdentifierError.for_id(book_id)
        book = await self.books.get_book_by_id(book_id)
        if book is None:
            raise BookNotFoundError()
        authorize(user, book)
        return book

    async def create(self, user: UserRecord, title: Optional[str], author: Optional[str]) -> BookRecord:
        """Create a book owned by the caller."""
        _require(title, "Title not provided")
        _require(author, "Author not provided")
        book = await self.books.create_book(user.id, title, author)
        logger.info("Book created", book_id=book.id, owner=book.owner)
        return book

    async def list_accessible(self, user: UserRecord) -> List[BookRecord]:
        """All books for admins, own books for everyone else."""
        return await self.books.list_books(owner_id=ownership_filter(user))

    async def get(self, user: UserRecord, book_id: str) -> BookRecord:
        return await self._resolve(user, book_id)

    async def update(self, user: UserRecord, book_id: str, fields: Dict[str, Any]) -> BookRecord:
        """
        Merge the supplied fields into a book.

        Fields absent from ``fields`` keep their stored values. A field that is
        supplied must carry a value.
        """
        changes = {k: v for k, v in fields.items() if k in BOOK_FIELDS}
        for name, value in changes.items():
            _require(value, f"{name.capitalize()} not provided")

        await self._resolve(user, book_id)
        return await self._write(book_id, changes)

    async def replace(self, user: UserRecord, book_id: str, title: Optional[str], author: Optional[str]) -> BookRecord:
        """Overwrite every mutable field of a book."""
        _require(title, "Title not provided")
        _require(author, "Author not provided")

        await self._resolve(user, book_id)
        return await self._write(book_id, {"title": title, "author": author})

    async def delete(self, user: UserRecord, book_id: str) -> None:
        await self._resolve(user, book_id)
        if not await self.books.delete_book(book_id):
            raise PersistenceError("Book not deleted")
        logger.info("Book deleted", book_id=book_id, user_id=user.id)

    async def _write(self, book_id: str, changes: Dict[str, Any]) -> BookRecord:
        book = await self.books.update_book(book_id, changes)
        if book is None:
            # Removed between the ownership check and the write
            raise BookNotFoundError()
        logger.info("Book updated", book_id=book_id, fields=sorted(changes))
        return book


@dataclass
class AppServices:
    """Everything the routes need, built once at startup."""
    users: UserService
    books: BookService
    tokens: TokenManager
    user_store: UserStore
