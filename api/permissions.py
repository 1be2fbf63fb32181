"""
Ownership rule for books.

Admins may act on any book. Everyone else may act only on books they own.
Listing is scoped by ``ownership_filter`` instead of being denied.
"""

from typing import Optional

import structlog

from api.errors import AccessDeniedError
from api.models import BookRecord, UserRecord

logger = structlog.get_logger(__name__)


def is_allowed(user: UserRecord, book: BookRecord) -> bool:
    """True if ``user`` may read or mutate ``book``."""
    if user.is_admin:
        return True
    return book.owner == user.id


def authorize(user: UserRecord, book: BookRecord) -> None:
    """Raise AccessDeniedError unless ``user`` may act on ``book``."""
    if not is_allowed(user, book):
        logger.warning("Access denied", user_id=user.id, book_id=book.id, owner=book.owner)
        raise AccessDeniedError()


def ownership_filter(user: UserRecord) -> Optional[str]:
    """Owner id to restrict listings to, or None for unrestricted access."""
    return None if user.is_admin else user.id
