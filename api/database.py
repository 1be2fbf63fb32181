"""
MongoDB access layer for users and books.
Handles connection, indexing, and CRUD operations on both collections.
"""

from typing import Any, Dict, List, Optional

import structlog
from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import ConnectionFailure, DuplicateKeyError, PyMongoError

from api.errors import DuplicateEmailError, PersistenceError
from api.models import BookRecord, UserRecord, UserRole

logger = structlog.get_logger(__name__)


def is_valid_object_id(value: str) -> bool:
    """Check an identifier is a well-formed ObjectId without touching the database."""
    return ObjectId.is_valid(value)


def _user_from_doc(doc: Dict[str, Any]) -> UserRecord:
    return UserRecord(
        id=str(doc["_id"]),
        email=doc["email"],
        password_hash=doc["password_hash"],
        role=doc.get("role", UserRole.USER.value)
    )


def _book_from_doc(doc: Dict[str, Any]) -> BookRecord:
    return BookRecord(
        id=str(doc["_id"]),
        title=doc["title"],
        author=doc["author"],
        owner=str(doc["owner"])
    )


class UserStore:
    """Credential store backed by the ``users`` collection."""

    def __init__(self, collection: AsyncIOMotorCollection):
        self.collection = collection

    async def create_indexes(self) -> None:
        # Email uniqueness is enforced here, not by a pre-check
        await self.collection.create_index("email", unique=True)

    async def create_user(self, email: str, password_hash: str, role: UserRole = UserRole.USER) -> UserRecord:
        """
        Insert a new user.

        Args:
            email: Validated email address
            password_hash: bcrypt hash of the password
            role: Role to assign

        Returns:
            The created user

        Raises:
            DuplicateEmailError: If the email is already registered
            PersistenceError: On any other database failure
        """
        doc = {"email": email, "password_hash": password_hash, "role": role.value}
        try:
            result = await self.collection.insert_one(doc)
        except DuplicateKeyError as e:
            logger.warning("Duplicate email on registration", email=email)
            raise DuplicateEmailError(f"User with email: {email} already exists") from e
        except PyMongoError as e:
            logger.error("Failed to insert user", email=email, error=str(e))
            raise PersistenceError(str(e)) from e

        doc["_id"] = result.inserted_id
        return _user_from_doc(doc)

    async def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        """Look a user up by email; None if absent."""
        try:
            doc = await self.collection.find_one({"email": email})
        except PyMongoError as e:
            logger.error("Failed to retrieve user", email=email, error=str(e))
            raise PersistenceError(str(e)) from e
        return _user_from_doc(doc) if doc else None

    async def list_users(self) -> List[UserRecord]:
        """Return every user ordered by creation."""
        try:
            cursor = self.collection.find({}).sort("_id", 1)
            return [_user_from_doc(doc) async for doc in cursor]
        except PyMongoError as e:
            logger.error("Failed to list users", error=str(e))
            raise PersistenceError(str(e)) from e


class BookStore:
    """Book store backed by the ``books`` collection."""

    def __init__(self, collection: AsyncIOMotorCollection):
        self.collection = collection

    async def create_indexes(self) -> None:
        # Non-admin listings filter on owner
        await self.collection.create_index("owner")

    async def create_book(self, owner_id: str, title: str, author: str) -> BookRecord:
        """Insert a book owned by ``owner_id``."""
        doc = {"title": title, "author": author, "owner": ObjectId(owner_id)}
        try:
            result = await self.collection.insert_one(doc)
        except PyMongoError as e:
            logger.error("Failed to insert book", owner=owner_id, error=str(e))
            raise PersistenceError(str(e)) from e

        doc["_id"] = result.inserted_id
        return _book_from_doc(doc)

    async def list_books(self, owner_id: Optional[str] = None) -> List[BookRecord]:
        """
        List books, optionally restricted to one owner.

        Args:
            owner_id: Only return books owned by this user when given

        Returns:
            Books sorted by identifier
        """
        filter_query = {}
        if owner_id is not None:
            filter_query["owner"] = ObjectId(owner_id)

        try:
            cursor = self.collection.find(filter_query).sort("_id", 1)
            return [_book_from_doc(doc) async for doc in cursor]
        except PyMongoError as e:
            logger.error("Failed to list books", owner=owner_id, error=str(e))
            raise PersistenceError(str(e)) from e

    async def get_book_by_id(self, book_id: str) -> Optional[BookRecord]:
        """Fetch a book by a well-formed identifier; None if absent."""
        try:
            doc = await self.collection.find_one({"_id": ObjectId(book_id)})
        except PyMongoError as e:
            logger.error("Failed to get book by ID", book_id=book_id, error=str(e))
            raise PersistenceError(str(e)) from e
        return _book_from_doc(doc) if doc else None

    async def update_book(self, book_id: str, fields: Dict[str, Any]) -> Optional[BookRecord]:
        """
        Set the given fields on a book and return the stored result.

        Only ``title`` and ``author`` are writable; the owner is never touched.
        """
        changes = {k: v for k, v in fields.items() if k in ("title", "author")}
        if not changes:
            return await self.get_book_by_id(book_id)

        try:
            doc = await self.collection.find_one_and_update(
                {"_id": ObjectId(book_id)},
                {"$set": changes},
                return_document=ReturnDocument.AFTER
            )
        except PyMongoError as e:
            logger.error("Failed to update book", book_id=book_id, error=str(e))
            raise PersistenceError(str(e)) from e
        return _book_from_doc(doc) if doc else None

    async def delete_book(self, book_id: str) -> bool:
        """Remove a book permanently. Returns False if nothing was deleted."""
        try:
            result = await self.collection.delete_one({"_id": ObjectId(book_id)})
        except PyMongoError as e:
            logger.error("Failed to delete book", book_id=book_id, error=str(e))
            raise PersistenceError(str(e)) from e
        return result.deleted_count == 1


class MongoDBManager:
    """
    Async MongoDB manager owning the client and both stores.
    """

    def __init__(self, connection_url: str, database_name: str):
        """
        Initialize MongoDB manager.

        Args:
            connection_url: MongoDB connection URL
            database_name: Name of the database
        """
        self.connection_url = connection_url
        self.database_name = database_name
        self.client: Optional[AsyncIOMotorClient] = None
        self.database: Optional[AsyncIOMotorDatabase] = None
        self.users: Optional[UserStore] = None
        self.books: Optional[BookStore] = None

    async def connect(self) -> None:
        """Establish connection to MongoDB."""
        try:
            self.client = AsyncIOMotorClient(self.connection_url)
            self.database = self.client[self.database_name]
            self.users = UserStore(self.database.users)
            self.books = BookStore(self.database.books)

            # Test connection
            await self.client.admin.command('ping')
            logger.info("Successfully connected to MongoDB", database=self.database_name)

            await self._create_indexes()

        except ConnectionFailure as e:
            logger.error("Failed to connect to MongoDB", error=str(e))
            raise

    async def disconnect(self) -> None:
        """Close MongoDB connection."""
        if self.client:
            self.client.close()
            logger.info("Disconnected from MongoDB")

    async def _create_indexes(self) -> None:
        try:
            await self.users.create_indexes()
            await self.books.create_indexes()
            logger.info("Successfully created MongoDB indexes")
        except Exception as e:
            logger.error("Failed to create indexes", error=str(e))
            raise

    async def health_check(self) -> Dict:
        """
        Perform database health check.

        Returns:
            Dictionary with health status
        """
        if self.database is None:
            return {"status": "unhealthy", "error": "not connected"}
        try:
            await self.database.command("ping")
            users_count = await self.database.users.count_documents({})
            books_count = await self.database.books.count_documents({})
            return {
                "status": "healthy",
                "users_count": users_count,
                "books_count": books_count
            }
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return {
                "status": "unhealthy",
                "error": str(e)
            }
