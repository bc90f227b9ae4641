"""
Database service layer for the Book Heaven API.

Every operation is a single call against the books collection. Ownership is
enforced by putting the owner's email into the storage filter itself.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase

from api.models import (
    CREATED_AT_FIELD, ID_FIELD, OWNER_EMAIL_FIELD, OWNER_NAME_FIELD,
    SERVER_MANAGED_FIELDS, VerifiedIdentity
)

logger = structlog.get_logger(__name__)


class InvalidBookIdError(ValueError):
    """Raised when a book identifier is not a valid ObjectId."""


class EmptyUpdateError(ValueError):
    """Raised when an update carries no client-editable fields."""


def parse_book_id(book_id: str) -> ObjectId:
    """
    Convert a path identifier into an ObjectId.

    Raises:
        InvalidBookIdError: If the identifier is malformed
    """
    try:
        return ObjectId(book_id)
    except (InvalidId, TypeError) as e:
        raise InvalidBookIdError(f"Invalid book id: {book_id!r}") from e


def serialize_book(book_doc: Dict[str, Any]) -> Dict[str, Any]:
    """Make a stored document JSON-safe."""
    book = dict(book_doc)
    if ID_FIELD in book:
        book[ID_FIELD] = str(book[ID_FIELD])
    created_at = book.get(CREATED_AT_FIELD)
    if isinstance(created_at, datetime):
        book[CREATED_AT_FIELD] = created_at.isoformat()
    return book


async def connect_to_mongodb(
    uri: str,
    database_name: str
) -> Tuple[AsyncIOMotorClient, AsyncIOMotorDatabase]:
    """
    Open a client and verify the server answers.

    The client is closed again if the ping fails, and the error is re-raised.
    """
    client = AsyncIOMotorClient(uri, tz_aware=True)
    database = client[database_name]
    try:
        await database.command("ping")
    except Exception as e:
        logger.error("Failed to connect to database", database=database_name, error=str(e))
        client.close()
        raise
    logger.info("Database connection established", database=database_name)
    return client, database


class BookService:
    """Database service for book operations."""

    def __init__(self, collection: AsyncIOMotorCollection, database: Optional[AsyncIOMotorDatabase] = None):
        self.collection = collection
        self.database = database

    @classmethod
    def from_database(cls, database: AsyncIOMotorDatabase, collection_name: str = "books") -> "BookService":
        return cls(database[collection_name], database)

    async def create_book(self, fields: Dict[str, Any], identity: VerifiedIdentity) -> str:
        """
        Insert a new book owned by the caller.

        Owner fields and the creation timestamp always come from the server,
        overriding anything the client sent under the same keys.

        Args:
            fields: Client-supplied book fields
            identity: Verified caller identity

        Returns:
            The generated book identifier
        """
        book = {key: value for key, value in fields.items() if key != ID_FIELD}
        book[OWNER_EMAIL_FIELD] = identity.owner_email
        book[OWNER_NAME_FIELD] = identity.display_name
        book[CREATED_AT_FIELD] = datetime.now(timezone.utc)

        try:
            result = await self.collection.insert_one(book)
        except Exception as e:
            logger.error("Failed to insert book", owner_email=identity.owner_email, error=str(e))
            raise

        book_id = str(result.inserted_id)
        logger.info("Book created", book_id=book_id, owner_email=identity.owner_email)
        return book_id

    async def list_books(self) -> List[Dict[str, Any]]:
        """Return every book in the collection."""
        try:
            books_docs = await self.collection.find({}).to_list(length=None)
        except Exception as e:
            logger.error("Failed to list books", error=str(e))
            raise
        return [serialize_book(doc) for doc in books_docs]

    async def get_book(self, book_id: str) -> Optional[Dict[str, Any]]:
        """
        Get a single book by ID, whoever owns it.

        Args:
            book_id: Book identifier

        Returns:
            The book if found, None otherwise

        Raises:
            InvalidBookIdError: If the identifier is malformed
        """
        object_id = parse_book_id(book_id)
        try:
            book_doc = await self.collection.find_one({ID_FIELD: object_id})
        except Exception as e:
            logger.error("Failed to get book by ID", book_id=book_id, error=str(e))
            raise

        if book_doc is None:
            return None
        return serialize_book(book_doc)

    async def list_books_by_owner(self, owner_email: str) -> List[Dict[str, Any]]:
        """Return the books created by ``owner_email``."""
        try:
            books_docs = await self.collection.find({OWNER_EMAIL_FIELD: owner_email}).to_list(length=None)
        except Exception as e:
            logger.error("Failed to list books by owner", owner_email=owner_email, error=str(e))
            raise
        return [serialize_book(doc) for doc in books_docs]

    async def update_book(self, book_id: str, fields: Dict[str, Any], owner_email: str) -> bool:
        """
        Merge ``fields`` into a book owned by ``owner_email``.

        Server-managed fields in ``fields`` are ignored.

        Returns:
            True if a book matched both the id and the owner, False otherwise

        Raises:
            InvalidBookIdError: If the identifier is malformed
            EmptyUpdateError: If nothing editable is left to set
        """
        object_id = parse_book_id(book_id)
        changes = {key: value for key, value in fields.items() if key not in SERVER_MANAGED_FIELDS}
        if not changes:
            raise EmptyUpdateError("No fields to update")

        owner_filter = {ID_FIELD: object_id, OWNER_EMAIL_FIELD: owner_email}
        try:
            result = await self.collection.update_one(owner_filter, {"$set": changes})
        except Exception as e:
            logger.error("Failed to update book", book_id=book_id, owner_email=owner_email, error=str(e))
            raise

        if result.matched_count == 0:
            logger.info("Book update matched nothing", book_id=book_id, owner_email=owner_email)
            return False
        logger.info("Book updated", book_id=book_id, fields=sorted(changes))
        return True

    async def delete_book(self, book_id: str, owner_email: str) -> bool:
        """
        Delete a book owned by ``owner_email``.

        Returns:
            True if a book was deleted, False if none matched the id and owner

        Raises:
            InvalidBookIdError: If the identifier is malformed
        """
        object_id = parse_book_id(book_id)
        owner_filter = {ID_FIELD: object_id, OWNER_EMAIL_FIELD: owner_email}
        try:
            result = await self.collection.delete_one(owner_filter)
        except Exception as e:
            logger.error("Failed to delete book", book_id=book_id, owner_email=owner_email, error=str(e))
            raise

        if result.deleted_count == 0:
            logger.info("Book delete matched nothing", book_id=book_id, owner_email=owner_email)
            return False
        logger.info("Book deleted", book_id=book_id)
        return True

    async def health_check(self) -> Dict:
        """
        Perform database health check.

        Returns:
            Dictionary with health status
        """
        if self.database is None:
            return {"status": "unknown"}
        try:
            await self.database.command("ping")
            return {"status": "healthy"}
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return {
                "status": "unhealthy",
                "error": str(e)
            }
