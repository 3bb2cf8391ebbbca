"""
Firestore + Firebase Auth storage.

Layout:
  users/{uid}/categories/{categoryId}  {name, apps: [...]}
  users/{uid}/favorites/{appId}        app snapshot + timestamp
  users/{uid}/history/{auto}           appId + app snapshot + timestamp
  config/appConfig                     global flags

Firebase Auth is the only store for user role (custom claim) and disabled state.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

import firebase_admin
from firebase_admin import auth
from google.cloud.firestore_v1 import SERVER_TIMESTAMP, Query
from google.cloud.firestore_v1.base_query import FieldFilter

from apphub.storage import (
    DEFAULT_RECENT_LIMIT,
    NotFoundError,
    apply_app_changes,
    backend_errors,
    dedupe_recent,
    matches_term,
    new_id,
    replacement_apps,
    validate_app,
    validate_name,
)
from apphub.types import (
    DEFAULT_APP_CONFIG,
    AccessRecord,
    App,
    Category,
    ConnectionCheck,
    User,
    UserRole,
    username_from,
)

logger = logging.getLogger(__name__)

USERS_COLLECTION = "users"
CATEGORIES_COLLECTION = "categories"
FAVORITES_COLLECTION = "favorites"
HISTORY_COLLECTION = "history"
CONFIG_COLLECTION = "config"
APP_CONFIG_DOCUMENT = "appConfig"
CONNECTION_CHECK_DOCUMENT = "connectionCheck"

# History is de-duplicated client side, so read past the requested limit.
RECENT_OVERFETCH = 5
LIST_USERS_PAGE_SIZE = 1000


def _to_epoch(value: Any) -> Optional[float]:
    if isinstance(value, datetime):
        return value.timestamp()
    if isinstance(value, (int, float)):
        return float(value)
    return None


def _to_category(snapshot) -> Category:
    data = snapshot.to_dict() or {}
    return Category(
        id=snapshot.id,
        name=str(data.get("name", "")),
        apps=[App.from_dict(app) for app in data.get("apps") or []],
    )


def _to_user(record: auth.UserRecord) -> User:
    claims = record.custom_claims or {}
    created_ms = record.user_metadata.creation_timestamp if record.user_metadata else None
    return User(
        id=record.uid,
        username=username_from(record.display_name, record.email),
        email=record.email or "",
        role=UserRole.parse(claims.get("role")),
        created_at=created_ms / 1000.0 if created_ms else None,
        disabled=bool(record.disabled),
    )


class FirebaseStorage:
    def __init__(
        self,
        db: Any,
        app: Optional[firebase_admin.App] = None,
        default_config: Optional[dict] = None,
    ):
        self.db = db
        self.app = app
        self.default_config = dict(default_config or DEFAULT_APP_CONFIG)

    def _user_doc(self, user_id: str):
        return self.db.collection(USERS_COLLECTION).document(user_id)

    def _categories(self, user_id: str):
        return self._user_doc(user_id).collection(CATEGORIES_COLLECTION)

    def _favorites(self, user_id: str):
        return self._user_doc(user_id).collection(FAVORITES_COLLECTION)

    def _history(self, user_id: str):
        return self._user_doc(user_id).collection(HISTORY_COLLECTION)

    def _config_doc(self, name: str = APP_CONFIG_DOCUMENT):
        return self.db.collection(CONFIG_COLLECTION).document(name)

    def _require_category(self, user_id: str, category_id: str) -> Category:
        category = self.get_category_by_id(user_id, category_id)
        if not category:
            raise NotFoundError(f"Category {category_id} not found")
        return category

    def _write_apps(self, user_id: str, category_id: str, apps: list[App]) -> None:
        self._categories(user_id).document(category_id).update(
            {"apps": [app.as_dict() for app in apps]}
        )

    def _find_app(self, user_id: str, app_id: str) -> App:
        for category in self.get_categories(user_id):
            for app in category.apps:
                if app.id == app_id:
                    return app
        raise NotFoundError(f"App {app_id} not found")

    def get_categories(self, user_id: str) -> list[Category]:
        with backend_errors(logger, "Error getting categories for user %s", user_id):
            categories = [_to_category(doc) for doc in self._categories(user_id).stream()]
        logger.debug("Found %d categories for user %s", len(categories), user_id)
        return categories

    def get_category_by_id(
        self, user_id: str, category_id: str
    ) -> Optional[Category]:
        with backend_errors(logger, "Error getting category %s", category_id):
            snapshot = self._categories(user_id).document(category_id).get()
            if not snapshot.exists:
                return None
            return _to_category(snapshot)

    def create_category(
        self, user_id: str, name: str, apps: Optional[list[App]] = None
    ) -> Category:
        category_name = validate_name(name, "category name")
        created_apps = []
        for app in apps or []:
            valid = validate_app(app)
            valid.id = new_id()
            created_apps.append(valid)
        with backend_errors(logger, "Error creating category for user %s", user_id):
            _, ref = self._categories(user_id).add(
                {"name": category_name, "apps": [a.as_dict() for a in created_apps]}
            )
        return Category(id=ref.id, name=category_name, apps=created_apps)

    def update_category(
        self,
        user_id: str,
        category_id: str,
        *,
        name: Optional[str] = None,
        apps: Optional[list[App]] = None,
    ) -> Category:
        current = self._require_category(user_id, category_id)
        update: dict = {}
        if name is not None:
            update["name"] = validate_name(name, "category name")
        if apps is not None:
            owned = [a.id for a in current.apps]
            update["apps"] = [app.as_dict() for app in replacement_apps(owned, apps)]
        with backend_errors(logger, "Error updating category %s", category_id):
            if update:
                self._categories(user_id).document(category_id).update(update)
        return self._require_category(user_id, category_id)

    def delete_category(self, user_id: str, category_id: str) -> None:
        self._require_category(user_id, category_id)
        with backend_errors(logger, "Error deleting category %s", category_id):
            self._categories(user_id).document(category_id).delete()

    def get_apps(self, user_id: str, category_id: str) -> list[App]:
        category = self.get_category_by_id(user_id, category_id)
        return category.apps if category else []

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
        with backend_errors(logger, "Error creating app in category %s", category_id):
            self._write_apps(user_id, category_id, category.apps + [created])
        return created

    def update_app(
        self, user_id: str, category_id: str, app_id: str, changes: dict
    ) -> App:
        category = self._require_category(user_id, category_id)
        for index, app in enumerate(category.apps):
            if app.id == app_id:
                updated = apply_app_changes(app, changes)
                category.apps[index] = updated
                with backend_errors(logger, "Error updating app %s", app_id):
                    self._write_apps(user_id, category_id, category.apps)
                return updated
        raise NotFoundError(f"App {app_id} not found in category {category_id}")

    def delete_app(self, user_id: str, category_id: str, app_id: str) -> None:
        category = self._require_category(user_id, category_id)
        remaining = [app for app in category.apps if app.id != app_id]
        if len(remaining) == len(category.apps):
            raise NotFoundError(f"App {app_id} not found in category {category_id}")
        with backend_errors(logger, "Error deleting app %s", app_id):
            self._write_apps(user_id, category_id, remaining)

    def toggle_favorite(self, user_id: str, app_id: str, is_favorite: bool) -> None:
        favorite_ref = self._favorites(user_id).document(app_id)
        if not is_favorite:
            with backend_errors(logger, "Error removing favorite %s", app_id):
                favorite_ref.delete()
            return
        app = self._find_app(user_id, app_id)
        with backend_errors(logger, "Error adding favorite %s", app_id):
            favorite_ref.set({**app.as_dict(), "timestamp": SERVER_TIMESTAMP})

    def get_favorites(self, user_id: str) -> list[App]:
        with backend_errors(logger, "Error getting favorites for user %s", user_id):
            query = self._favorites(user_id).order_by(
                "timestamp", direction=Query.DESCENDING
            )
            return [
                App.from_dict(doc.to_dict() or {}, app_id=doc.id)
                for doc in query.stream()
            ]

    def is_favorite(self, user_id: str, app_id: str) -> bool:
        with backend_errors(logger, "Error checking favorite %s", app_id):
            return self._favorites(user_id).document(app_id).get().exists

    def record_access(self, user_id: str, app_id: str) -> None:
        app = self._find_app(user_id, app_id)
        with backend_errors(logger, "Error recording access to %s", app_id):
            self._history(user_id).add(
                {
                    "appId": app_id,
                    "name": app.name,
                    "url": app.url,
                    "icon": app.icon,
                    "timestamp": SERVER_TIMESTAMP,
                }
            )

    def _history_records(self, user_id: str, query) -> list[AccessRecord]:
        records = []
        for doc in query.stream():
            data = doc.to_dict() or {}
            records.append(
                AccessRecord(
                    user_id=user_id,
                    app_id=str(data.get("appId", "")),
                    name=str(data.get("name", "")),
                    url=str(data.get("url", "")),
                    icon=str(data.get("icon") or ""),
                    timestamp=_to_epoch(data.get("timestamp")) or 0.0,
                )
            )
        return records

    def get_recent_apps(
        self, user_id: str, limit: int = DEFAULT_RECENT_LIMIT
    ) -> list[App]:
        with backend_errors(logger, "Error getting recent apps for user %s", user_id):
            query = (
                self._history(user_id)
                .order_by("timestamp", direction=Query.DESCENDING)
                .limit(limit * RECENT_OVERFETCH)
            )
            return dedupe_recent(self._history_records(user_id, query), limit)

    def get_access_history(
        self, user_id: str, since: Optional[float] = None
    ) -> list[AccessRecord]:
        with backend_errors(logger, "Error getting access history for user %s", user_id):
            query = self._history(user_id)
            if since is not None:
                cutoff = datetime.fromtimestamp(since, tz=timezone.utc)
                query = query.where(filter=FieldFilter("timestamp", ">=", cutoff))
            query = query.order_by("timestamp", direction=Query.DESCENDING)
            return self._history_records(user_id, query)

    def search_apps(self, user_id: str, term: str) -> list[App]:
        results: list[App] = []
        for category in self.get_categories(user_id):
            results.extend(app for app in category.apps if matches_term(app, term))
        return results

    def get_app_config(self) -> dict:
        with backend_errors(logger, "Error getting application configuration"):
            config_ref = self._config_doc()
            snapshot = config_ref.get()
            if snapshot.exists:
                return snapshot.to_dict() or {}
            config = dict(self.default_config)
            config_ref.set(config)
            return config

    def update_app_config(self, changes: dict) -> dict:
        merged = {**self.get_app_config(), **changes}
        with backend_errors(logger, "Error updating application configuration"):
            self._config_doc().set(merged)
        return merged

    def get_users(self) -> list[User]:
        with backend_errors(logger, "Error listing Firebase Auth users"):
            page = auth.list_users(max_results=LIST_USERS_PAGE_SIZE, app=self.app)
            users = [_to_user(record) for record in page.iterate_all()]
        logger.info("Found %d users in Firebase Auth", len(users))
        return users

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        with backend_errors(logger, "Error getting user %s", user_id):
            try:
                return _to_user(auth.get_user(user_id, app=self.app))
            except auth.UserNotFoundError:
                return None

    def _require_user_record(self, user_id: str) -> auth.UserRecord:
        try:
            return auth.get_user(user_id, app=self.app)
        except auth.UserNotFoundError as exc:
            raise NotFoundError(f"User {user_id} not found") from exc

    def create_user(
        self, username: str, email: str, role: UserRole = UserRole.USER
    ) -> User:
        with backend_errors(logger, "Error creating user %s", email):
            record = auth.create_user(
                email=email, display_name=username or None, app=self.app
            )
            auth.set_custom_user_claims(record.uid, {"role": role.value}, app=self.app)
            logger.info("Created user %s with role %s", record.uid, role.value)
            return _to_user(auth.get_user(record.uid, app=self.app))

    def update_user_role(self, user_id: str, role: UserRole) -> User:
        logger.info("Updating role of user %s to %s", user_id, role.value)
        with backend_errors(logger, "Error updating role of user %s", user_id):
            record = self._require_user_record(user_id)
            claims = {**(record.custom_claims or {}), "role": role.value}
            auth.set_custom_user_claims(user_id, claims, app=self.app)
            return _to_user(auth.get_user(user_id, app=self.app))

    def toggle_user_status(self, user_id: str, disabled: bool) -> User:
        logger.info("%s user %s", "Disabling" if disabled else "Enabling", user_id)
        with backend_errors(logger, "Error updating status of user %s", user_id):
            self._require_user_record(user_id)
            return _to_user(auth.update_user(user_id, disabled=disabled, app=self.app))

    def delete_user(self, user_id: str) -> None:
        logger.info("Deleting user %s", user_id)
        with backend_errors(logger, "Error deleting user %s", user_id):
            self._require_user_record(user_id)
            auth.delete_user(user_id, app=self.app)
            for collection in (
                self._categories(user_id),
                self._favorites(user_id),
                self._history(user_id),
            ):
                for doc in collection.stream():
                    doc.reference.delete()
            self._user_doc(user_id).delete()

    def has_users(self) -> bool:
        with backend_errors(logger, "Error checking for users"):
            page = auth.list_users(max_results=1, app=self.app)
            return len(page.users) > 0

    def check_connection(self) -> ConnectionCheck:
        result = ConnectionCheck()
        try:
            self._config_doc().get()
            result.connection = True
            result.read = True
            self._config_doc(CONNECTION_CHECK_DOCUMENT).set(
                {"timestamp": SERVER_TIMESTAMP}
            )
            result.write = True
        except Exception as exc:
            logger.warning("Firestore connection check failed: %s", exc)
            result.error = str(exc)
        return result
