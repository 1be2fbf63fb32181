"""
Pytest configuration and shared fixtures.
"""

from typing import Any, Dict, List, Optional

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from api.errors import DuplicateEmailError
from api.main import app
from api.models import BookRecord, UserRecord, UserRole
from api.security import TokenManager
from api.services import AppServices, BookService, UserService

TEST_SECRET = "test-secret-key"

# Lowest cost bcrypt accepts; keeps the suite fast
TEST_BCRYPT_ROUNDS = 4


class InMemoryUserStore:
    """UserStore double keeping documents in a dict."""

    def __init__(self):
        self.users: Dict[str, UserRecord] = {}
        self.calls: List[str] = []

    async def create_user(self, email: str, password_hash: str, role: UserRole = UserRole.USER) -> UserRecord:
        self.calls.append("create_user")
        if any(u.email == email for u in self.users.values()):
            raise DuplicateEmailError(f"User with email: {email} already exists")
        user = UserRecord(id=str(ObjectId()), email=email, password_hash=password_hash, role=role)
        self.users[user.id] = user
        return user

    async def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        self.calls.append("get_user_by_email")
        return next((u for u in self.users.values() if u.email == email), None)

    async def list_users(self) -> List[UserRecord]:
        self.calls.append("list_users")
        return sorted(self.users.values(), key=lambda u: u.id)


class InMemoryBookStore:
    """BookStore double keeping documents in a dict."""

    def __init__(self):
        self.books: Dict[str, BookRecord] = {}
        self.calls: List[str] = []
        self.fail_delete = False

    async def create_book(self, owner_id: str, title: str, author: str) -> BookRecord:
        self.calls.append("create_book")
        book = BookRecord(id=str(ObjectId()), title=title, author=author, owner=owner_id)
        self.books[book.id] = book
        return book

    async def list_books(self, owner_id: Optional[str] = None) -> List[BookRecord]:
        self.calls.append("list_books")
        books = sorted(self.books.values(), key=lambda b: b.id)
        if owner_id is not None:
            books = [b for b in books if b.owner == owner_id]
        return books

    async def get_book_by_id(self, book_id: str) -> Optional[BookRecord]:
        self.calls.append("get_book_by_id")
        return self.books.get(book_id)

    async def update_book(self, book_id: str, fields: Dict[str, Any]) -> Optional[BookRecord]:
        self.calls.append("update_book")
        book = self.books.get(book_id)
        if book is None:
            return None
        changes = {k: v for k, v in fields.items() if k in ("title", "author")}
        updated = book.model_copy(update=changes)
        self.books[book_id] = updated
        return updated

    async def delete_book(self, book_id: str) -> bool:
        self.calls.append("delete_book")
        if self.fail_delete:
            return False
        return self.books.pop(book_id, None) is not None


@pytest.fixture
def user_store():
    return InMemoryUserStore()


@pytest.fixture
def book_store():
    return InMemoryBookStore()


@pytest.fixture
def token_manager():
    return TokenManager(secret_key=TEST_SECRET)


@pytest.fixture
def user_service(user_store, token_manager):
    return UserService(user_store, token_manager, bcrypt_rounds=TEST_BCRYPT_ROUNDS)


@pytest.fixture
def book_service(book_store):
    return BookService(book_store)


@pytest.fixture
def services(user_service, book_service, token_manager, user_store):
    return AppServices(
        users=user_service,
        books=book_service,
        tokens=token_manager,
        user_store=user_store
    )


@pytest.fixture
def client(services):
    """Test client wired to in-memory stores; the lifespan is not run."""
    app.state.services = services
    yield TestClient(app)
    app.state.services = None


@pytest.fixture
def make_user():
    """Factory for user records that are not stored anywhere."""
    def _make(role: UserRole = UserRole.USER, email: str = "reader@example.com") -> UserRecord:
        return UserRecord(id=str(ObjectId()), email=email, password_hash="x", role=role)
    return _make


@pytest.fixture
def make_book():
    """Factory for book records that are not stored anywhere."""
    def _make(owner: str, title: str = "Dune", author: str = "Frank Herbert") -> BookRecord:
        return BookRecord(id=str(ObjectId()), title=title, author=author, owner=owner)
    return _make
