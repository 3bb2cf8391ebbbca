"""
Administrator bootstrap used by scripts/bootstrap_admin.py.
"""

from __future__ import annotations

import logging
from typing import Optional

from apphub.storage import AppStorage, NotFoundError
from apphub.types import User, UserRole

logger = logging.getLogger(__name__)


def find_user(
    storage: AppStorage, user_id: Optional[str] = None, email: Optional[str] = None
) -> Optional[User]:
    if user_id:
        return storage.get_user_by_id(user_id)
    if email:
        wanted = email.strip().lower()
        for user in storage.get_users():
            if user.email.lower() == wanted:
                return user
    return None


def ensure_admin(
    storage: AppStorage,
    user_id: Optional[str] = None,
    email: Optional[str] = None,
    username: Optional[str] = None,
    create: bool = False,
) -> User:
    """
    Promote an existing user to admin, or create one when `create` is set.

    Creation needs an email; the username defaults to its local part.
    """
    if not user_id and not email:
        raise ValueError("Either user_id or email is required")

    user = find_user(storage, user_id=user_id, email=email)
    if user:
        if user.role == UserRole.ADMIN:
            logger.info("User %s is already an admin", user.id)
            return user
        logger.info("Promoting user %s to admin", user.id)
        return storage.update_user_role(user.id, UserRole.ADMIN)

    if not create or not email:
        raise NotFoundError(f"User {user_id or email} not found")
    name = username or email.split("@")[0]
    logger.info("Creating admin user %s", email)
    return storage.create_user(name, email, UserRole.ADMIN)
