"""
Storage abstraction for AppHub and an in-memory implementation.

Every backend (Firestore, Postgres, Supabase, memory) implements the same
`AppStorage` protocol so routes never care which database is configured.
"""

from __future__ import annotations

import copy
import logging
import time
import uuid
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, Optional, Protocol
from urllib.parse import urlparse

from apphub.types import (
    DEFAULT_APP_CONFIG,
    AccessRecord,
    App,
    Category,
    ConnectionCheck,
    User,
    UserRole,
)

DEFAULT_RECENT_LIMIT = 10


class StorageError(Exception):
    """A backend call failed."""


class NotFoundError(StorageError):
    """A mutation targeted a category, app or user that does not exist."""


class ValidationError(StorageError):
    """Input was rejected before reaching the backend."""


class AppStorage(Protocol):
    """Operations the API needs from a storage backend."""

    def get_categories(self, user_id: str) -> list[Category]:
        ...

    def get_category_by_id(
        self, user_id: str, category_id: str
    ) -> Optional[Category]:
        ...

    def create_category(
        self, user_id: str, name: str, apps: Optional[list[App]] = None
    ) -> Category:
        ...

    def update_category(
        self,
        user_id: str,
        category_id: str,
        *,
        name: Optional[str] = None,
        apps: Optional[list[App]] = None,
    ) -> Category:
        ...

    def delete_category(self, user_id: str, category_id: str) -> None:
        ...

    def get_apps(self, user_id: str, category_id: str) -> list[App]:
        ...

    def get_app_by_id(
        self, user_id: str, category_id: str, app_id: str
    ) -> Optional[App]:
        ...

    def create_app(self, user_id: str, category_id: str, app: App) -> App:
        ...

    def update_app(
        self, user_id: str, category_id: str, app_id: str, changes: dict
    ) -> App:
        ...

    def delete_app(self, user_id: str, category_id: str, app_id: str) -> None:
        ...

    def toggle_favorite(self, user_id: str, app_id: str, is_favorite: bool) -> None:
        ...

    def get_favorites(self, user_id: str) -> list[App]:
        ...

    def is_favorite(self, user_id: str, app_id: str) -> bool:
        ...

    def record_access(self, user_id: str, app_id: str) -> None:
        ...

    def get_recent_apps(
        self, user_id: str, limit: int = DEFAULT_RECENT_LIMIT
    ) -> list[App]:
        ...

    def get_access_history(
        self, user_id: str, since: Optional[float] = None
    ) -> list[AccessRecord]:
        ...

    def search_apps(self, user_id: str, term: str) -> list[App]:
        ...

    def get_app_config(self) -> dict:
        ...

    def update_app_config(self, changes: dict) -> dict:
        ...

    def get_users(self) -> list[User]:
        ...

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        ...

    def create_user(
        self, username: str, email: str, role: UserRole = UserRole.USER
    ) -> User:
        ...

    def update_user_role(self, user_id: str, role: UserRole) -> User:
        ...

    def toggle_user_status(self, user_id: str, disabled: bool) -> User:
        ...

    def delete_user(self, user_id: str) -> None:
        ...

    def has_users(self) -> bool:
        ...

    def check_connection(self) -> ConnectionCheck:
        ...


@contextmanager
def backend_errors(logger: logging.Logger, message: str, *args) -> Iterator[None]:
    """
    Log and wrap driver exceptions as StorageError.

    StorageError subclasses raised inside the block pass through untouched.
    """
    try:
        yield
    except StorageError:
        raise
    except Exception as exc:
        logger.exception(message, *args)
        raise StorageError(message % args) from exc


def new_id() -> str:
    return uuid.uuid4().hex


def validate_name(name: Optional[str], what: str = "name") -> str:
    if name is None or not str(name).strip():
        raise ValidationError(f"{what} must not be empty")
    return str(name).strip()


def validate_url(url: Optional[str]) -> str:
    parsed = urlparse(str(url or "").strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError(f"Invalid URL: {url!r}")
    return parsed.geturl()


def validate_app(app: App) -> App:
    """Return a normalized copy of `app` or raise ValidationError."""
    return App(
        id=app.id,
        name=validate_name(app.name, "app name"),
        url=validate_url(app.url),
        icon=app.icon or "",
        description=app.description,
    )


def apply_app_changes(app: App, changes: dict) -> App:
    """Merge a partial update into `app`, keeping its id."""
    merged = App(
        id=app.id,
        name=changes.get("name", app.name),
        url=changes.get("url", app.url),
        icon=changes.get("icon", app.icon),
        description=changes.get("description", app.description),
    )
    return validate_app(merged)


def replacement_apps(owned_ids: Iterable[str], apps: list[App]) -> list[App]:
    """
    Validate a full replacement app list for one category.

    Ids are kept only when listed in `owned_ids` (once each); anything else
    gets a fresh id so an app never sits in two categories.
    """
    owned = {app_id for app_id in owned_ids if app_id}
    replaced = []
    for app in apps:
        valid = validate_app(app)
        if valid.id in owned:
            owned.discard(valid.id)
        else:
            valid.id = new_id()
        replaced.append(valid)
    return replaced


def matches_term(app: App, term: str) -> bool:
    needle = term.lower()
    return needle in app.name.lower() or needle in (app.description or "").lower()


def dedupe_recent(records: list[AccessRecord], limit: int) -> list[App]:
    """Collapse newest-first access records into distinct apps."""
    if limit <= 0:
        return []
    seen: set[str] = set()
    apps: list[App] = []
    for record in records:
        if record.app_id in seen:
            continue
        seen.add(record.app_id)
        apps.append(
            App(id=record.app_id, name=record.name, url=record.url, icon=record.icon)
        )
        if len(apps) >= limit:
            break
    return apps


class InMemoryStorage:
    """Dict-backed storage for development and tests."""

    def __init__(self, default_config: Optional[dict] = None):
        self.default_config = dict(default_config or DEFAULT_APP_CONFIG)
        self.categories: Dict[str, Dict[str, Category]] = {}
        self.favorites: Dict[tuple[str, str], tuple[App, float]] = {}
        self.history: list[AccessRecord] = []
        self.config: Optional[dict] = None
        self.users: Dict[str, User] = {}
        self.config_writes = 0

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.categories.clear()
        self.favorites.clear()
        self.history.clear()
        self.users.clear()
        self.config = None
        self.config_writes = 0

    def _user_categories(self, user_id: str) -> Dict[str, Category]:
        return self.categories.setdefault(user_id, {})

    def _require_category(self, user_id: str, category_id: str) -> Category:
        category = self._user_categories(user_id).get(category_id)
        if not category:
            raise NotFoundError(f"Category {category_id} not found")
        return category

    def _find_app(self, user_id: str, app_id: str) -> Optional[App]:
        for category in self._user_categories(user_id).values():
            for app in category.apps:
                if app.id == app_id:
                    return app
        return None

    def get_categories(self, user_id: str) -> list[Category]:
        return [copy.deepcopy(c) for c in self._user_categories(user_id).values()]

    def get_category_by_id(
        self, user_id: str, category_id: str
    ) -> Optional[Category]:
        category = self._user_categories(user_id).get(category_id)
        return copy.deepcopy(category) if category else None

    def create_category(
        self, user_id: str, name: str, apps: Optional[list[App]] = None
    ) -> Category:
        category = Category(id=new_id(), name=validate_name(name, "category name"))
        for app in apps or []:
            valid = validate_app(app)
            valid.id = new_id()
            category.apps.append(valid)
        self._user_categories(user_id)[category.id] = category
        return copy.deepcopy(category)

    def update_category(
        self,
        user_id: str,
        category_id: str,
        *,
        name: Optional[str] = None,
        apps: Optional[list[App]] = None,
    ) -> Category:
        category = self._require_category(user_id, category_id)
        new_name = validate_name(name, "category name") if name is not None else None
        if apps is not None:
            category.apps = replacement_apps([a.id for a in category.apps], apps)
        if new_name is not None:
            category.name = new_name
        return copy.deepcopy(category)

    def delete_category(self, user_id: str, category_id: str) -> None:
        category = self._require_category(user_id, category_id)
        for app in category.apps:
            self._forget_app(app.id)
        del self._user_categories(user_id)[category_id]

    def get_apps(self, user_id: str, category_id: str) -> list[App]:
        category = self._user_categories(user_id).get(category_id)
        return copy.deepcopy(category.apps) if category else []

    def get_app_by_id(
        self, user_id: str, category_id: str, app_id: str
    ) -> Optional[App]:
        for app in self.get_apps(user_id, category_id):
            if app.id == app_id:
                return app
        return None

    def create_app(self, user_id: str, category_id: str, app: App) -> App:
        category = self._require_category(user_id, category_id)
        created = validate_app(app)
        created.id = new_id()
        category.apps.append(created)
        return copy.deepcopy(created)

    def update_app(
        self, user_id: str, category_id: str, app_id: str, changes: dict
    ) -> App:
        category = self._require_category(user_id, category_id)
        for index, app in enumerate(category.apps):
            if app.id == app_id:
                category.apps[index] = apply_app_changes(app, changes)
                return copy.deepcopy(category.apps[index])
        raise NotFoundError(f"App {app_id} not found in category {category_id}")

    def delete_app(self, user_id: str, category_id: str, app_id: str) -> None:
        category = self._require_category(user_id, category_id)
        remaining = [app for app in category.apps if app.id != app_id]
        if len(remaining) == len(category.apps):
            raise NotFoundError(f"App {app_id} not found in category {category_id}")
        category.apps = remaining
        self._forget_app(app_id)

    def _forget_app(self, app_id: Optional[str]) -> None:
        for key in [k for k in self.favorites if k[1] == app_id]:
            del self.favorites[key]
        self.history = [r for r in self.history if r.app_id != app_id]

    def toggle_favorite(self, user_id: str, app_id: str, is_favorite: bool) -> None:
        key = (user_id, app_id)
        if not is_favorite:
            self.favorites.pop(key, None)
            return
        if key in self.favorites:
            return
        app = self._find_app(user_id, app_id)
        if not app:
            raise NotFoundError(f"App {app_id} not found")
        self.favorites[key] = (copy.deepcopy(app), time.time())

    def get_favorites(self, user_id: str) -> list[App]:
        entries = [
            (app, ts)
            for (uid, _), (app, ts) in self.favorites.items()
            if uid == user_id
        ]
        # Insertion order breaks timestamp ties, newest first.
        entries = list(reversed(entries))
        entries.sort(key=lambda entry: entry[1], reverse=True)
        return [copy.deepcopy(app) for app, _ in entries]

    def is_favorite(self, user_id: str, app_id: str) -> bool:
        return (user_id, app_id) in self.favorites

    def record_access(self, user_id: str, app_id: str) -> None:
        app = self._find_app(user_id, app_id)
        if not app:
            raise NotFoundError(f"App {app_id} not found")
        self.history.append(
            AccessRecord(
                user_id=user_id,
                app_id=app_id,
                name=app.name,
                url=app.url,
                icon=app.icon,
            )
        )

    def _history_newest_first(self, user_id: str) -> list[AccessRecord]:
        return [r for r in reversed(self.history) if r.user_id == user_id]

    def get_recent_apps(
        self, user_id: str, limit: int = DEFAULT_RECENT_LIMIT
    ) -> list[App]:
        return dedupe_recent(self._history_newest_first(user_id), limit)

    def get_access_history(
        self, user_id: str, since: Optional[float] = None
    ) -> list[AccessRecord]:
        records = self._history_newest_first(user_id)
        if since is not None:
            records = [r for r in records if r.timestamp >= since]
        return copy.deepcopy(records)

    def search_apps(self, user_id: str, term: str) -> list[App]:
        results: list[App] = []
        for category in self._user_categories(user_id).values():
            results.extend(
                copy.deepcopy(app) for app in category.apps if matches_term(app, term)
            )
        return results

    def get_app_config(self) -> dict:
        if self.config is None:
            self.config = dict(self.default_config)
            self.config_writes += 1
        return dict(self.config)

    def update_app_config(self, changes: dict) -> dict:
        merged = {**self.get_app_config(), **changes}
        self.config = merged
        self.config_writes += 1
        return dict(merged)

    def get_users(self) -> list[User]:
        return [copy.deepcopy(u) for u in self.users.values()]

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        user = self.users.get(user_id)
        return copy.deepcopy(user) if user else None

    def create_user(
        self, username: str, email: str, role: UserRole = UserRole.USER
    ) -> User:
        user = User(
            id=new_id(),
            username=username,
            email=email,
            role=role,
            created_at=time.time(),
        )
        self.users[user.id] = user
        return copy.deepcopy(user)

    def _require_user(self, user_id: str) -> User:
        user = self.users.get(user_id)
        if not user:
            raise NotFoundError(f"User {user_id} not found")
        return user

    def update_user_role(self, user_id: str, role: UserRole) -> User:
        user = self._require_user(user_id)
        user.role = role
        return copy.deepcopy(user)

    def toggle_user_status(self, user_id: str, disabled: bool) -> User:
        user = self._require_user(user_id)
        user.disabled = disabled
        return copy.deepcopy(user)

    def delete_user(self, user_id: str) -> None:
        self._require_user(user_id)
        del self.users[user_id]
        self.categories.pop(user_id, None)
        for key in [k for k in self.favorites if k[0] == user_id]:
            del self.favorites[key]
        self.history = [r for r in self.history if r.user_id != user_id]

    def has_users(self) -> bool:
        return bool(self.users)

    def check_connection(self) -> ConnectionCheck:
        return ConnectionCheck(connection=True, read=True, write=True)
