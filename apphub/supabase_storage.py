"""
Supabase storage: PostgREST tables for data, GoTrue admin API for users.

Tables are created with `apphub/sql/supabase_schema.sql`. Roles live in
`bms_user_roles`; disabled state is `user_metadata.disabled`, written together
with a ban so the auth server refuses sign-ins.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Optional

from supabase import AuthApiError, Client

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

CATEGORIES_TABLE = "bms_categories"
APPS_TABLE = "bms_apps"
FAVORITES_TABLE = "bms_favorites"
HISTORY_TABLE = "bms_access_history"
CONFIG_TABLE = "bms_config"
USER_ROLES_TABLE = "bms_user_roles"

APP_CONFIG_KEY = "appConfig"
CONNECTION_CHECK_KEY = "connectionCheck"

RECENT_OVERFETCH = 5
USERS_PAGE_SIZE = 1000
# GoTrue has no permanent ban; 100 years is close enough.
DISABLED_BAN_DURATION = "876000h"


def _to_epoch(value: Any) -> Optional[float]:
    if isinstance(value, datetime):
        return value.timestamp()
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
        except ValueError:
            return None
    return None


def _to_app(row: dict) -> App:
    return App(
        id=row.get("id"),
        name=str(row.get("name", "")),
        url=str(row.get("url", "")),
        icon=str(row.get("icon") or ""),
        description=row.get("description"),
    )


def _to_category(row: dict) -> Category:
    apps = sorted((_to_app(a) for a in row.get(APPS_TABLE) or []), key=lambda a: a.name)
    return Category(id=row["id"], name=str(row.get("name", "")), apps=apps)


def _to_user(auth_user: Any, role: Optional[str]) -> User:
    metadata = auth_user.user_metadata or {}
    return User(
        id=auth_user.id,
        username=username_from(metadata.get("username"), auth_user.email),
        email=auth_user.email or "",
        role=UserRole.parse(role),
        created_at=_to_epoch(auth_user.created_at),
        disabled=bool(metadata.get("disabled", False)),
    )


class SupabaseStorage:
    def __init__(self, client: Client, default_config: Optional[dict] = None):
        self.client = client
        self.default_config = dict(default_config or DEFAULT_APP_CONFIG)

    def _table(self, name: str):
        return self.client.table(name)

    def _require_category(self, user_id: str, category_id: str) -> Category:
        category = self.get_category_by_id(user_id, category_id)
        if not category:
            raise NotFoundError(f"Category {category_id} not found")
        return category

    def _app_row(self, category_id: str, app: App) -> dict:
        return {
            "id": app.id,
            "category_id": category_id,
            "name": app.name,
            "url": app.url,
            "icon": app.icon,
            "description": app.description,
            "created_at": time.time(),
        }

    def _find_app(self, user_id: str, app_id: str) -> App:
        for category in self.get_categories(user_id):
            for app in category.apps:
                if app.id == app_id:
                    return app
        raise NotFoundError(f"App {app_id} not found")

    def get_categories(self, user_id: str) -> list[Category]:
        with backend_errors(logger, "Error getting categories for user %s", user_id):
            result = (
                self._table(CATEGORIES_TABLE)
                .select(f"*, {APPS_TABLE}(*)")
                .eq("user_id", user_id)
                .order("created_at")
                .execute()
            )
            return [_to_category(row) for row in result.data or []]

    def get_category_by_id(
        self, user_id: str, category_id: str
    ) -> Optional[Category]:
        with backend_errors(logger, "Error getting category %s", category_id):
            result = (
                self._table(CATEGORIES_TABLE)
                .select(f"*, {APPS_TABLE}(*)")
                .eq("user_id", user_id)
                .eq("id", category_id)
                .limit(1)
                .execute()
            )
            rows = result.data or []
            return _to_category(rows[0]) if rows else None

    def create_category(
        self, user_id: str, name: str, apps: Optional[list[App]] = None
    ) -> Category:
        category = Category(id=new_id(), name=validate_name(name, "category name"))
        for app in apps or []:
            valid = validate_app(app)
            valid.id = new_id()
            category.apps.append(valid)
        with backend_errors(logger, "Error creating category for user %s", user_id):
            self._table(CATEGORIES_TABLE).insert(
                {
                    "id": category.id,
                    "user_id": user_id,
                    "name": category.name,
                    "created_at": time.time(),
                }
            ).execute()
            if category.apps:
                self._table(APPS_TABLE).insert(
                    [self._app_row(category.id, app) for app in category.apps]
                ).execute()
        category.apps.sort(key=lambda a: a.name)
        return category

    def update_category(
        self,
        user_id: str,
        category_id: str,
        *,
        name: Optional[str] = None,
        apps: Optional[list[App]] = None,
    ) -> Category:
        current = self._require_category(user_id, category_id)
        new_name = validate_name(name, "category name") if name is not None else None
        replaced = None
        if apps is not None:
            replaced = replacement_apps([a.id for a in current.apps], apps)
        with backend_errors(logger, "Error updating category %s", category_id):
            if new_name is not None:
                self._table(CATEGORIES_TABLE).update({"name": new_name}).eq(
                    "id", category_id
                ).execute()
            if replaced is not None:
                self._table(APPS_TABLE).delete().eq("category_id", category_id).execute()
                if replaced:
                    self._table(APPS_TABLE).insert(
                        [self._app_row(category_id, app) for app in replaced]
                    ).execute()
        return self._require_category(user_id, category_id)

    def delete_category(self, user_id: str, category_id: str) -> None:
        self._require_category(user_id, category_id)
        with backend_errors(logger, "Error deleting category %s", category_id):
            self._table(APPS_TABLE).delete().eq("category_id", category_id).execute()
            self._table(CATEGORIES_TABLE).delete().eq("id", category_id).eq(
                "user_id", user_id
            ).execute()

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
        self._require_category(user_id, category_id)
        created = validate_app(app)
        created.id = new_id()
        with backend_errors(logger, "Error creating app in category %s", category_id):
            self._table(APPS_TABLE).insert(self._app_row(category_id, created)).execute()
        return created

    def update_app(
        self, user_id: str, category_id: str, app_id: str, changes: dict
    ) -> App:
        current = self.get_app_by_id(user_id, category_id, app_id)
        if not current:
            raise NotFoundError(f"App {app_id} not found in category {category_id}")
        updated = apply_app_changes(current, changes)
        with backend_errors(logger, "Error updating app %s", app_id):
            self._table(APPS_TABLE).update(
                {
                    "name": updated.name,
                    "url": updated.url,
                    "icon": updated.icon,
                    "description": updated.description,
                }
            ).eq("id", app_id).execute()
        return updated

    def delete_app(self, user_id: str, category_id: str, app_id: str) -> None:
        if not self.get_app_by_id(user_id, category_id, app_id):
            raise NotFoundError(f"App {app_id} not found in category {category_id}")
        with backend_errors(logger, "Error deleting app %s", app_id):
            self._table(APPS_TABLE).delete().eq("id", app_id).execute()

    def toggle_favorite(self, user_id: str, app_id: str, is_favorite: bool) -> None:
        if not is_favorite:
            with backend_errors(logger, "Error removing favorite %s", app_id):
                self._table(FAVORITES_TABLE).delete().eq("user_id", user_id).eq(
                    "app_id", app_id
                ).execute()
            return
        if self.is_favorite(user_id, app_id):
            return
        self._find_app(user_id, app_id)
        with backend_errors(logger, "Error adding favorite %s", app_id):
            self._table(FAVORITES_TABLE).insert(
                {"user_id": user_id, "app_id": app_id, "timestamp": time.time()}
            ).execute()

    def get_favorites(self, user_id: str) -> list[App]:
        with backend_errors(logger, "Error getting favorites for user %s", user_id):
            result = (
                self._table(FAVORITES_TABLE)
                .select(f"timestamp, {APPS_TABLE}(*)")
                .eq("user_id", user_id)
                .order("timestamp", desc=True)
                .execute()
            )
            return [
                _to_app(row[APPS_TABLE])
                for row in result.data or []
                if row.get(APPS_TABLE)
            ]

    def is_favorite(self, user_id: str, app_id: str) -> bool:
        with backend_errors(logger, "Error checking favorite %s", app_id):
            result = (
                self._table(FAVORITES_TABLE)
                .select("app_id")
                .eq("user_id", user_id)
                .eq("app_id", app_id)
                .limit(1)
                .execute()
            )
            return bool(result.data)

    def record_access(self, user_id: str, app_id: str) -> None:
        self._find_app(user_id, app_id)
        with backend_errors(logger, "Error recording access to %s", app_id):
            self._table(HISTORY_TABLE).insert(
                {"user_id": user_id, "app_id": app_id, "timestamp": time.time()}
            ).execute()

    def _history_query(self, user_id: str):
        return (
            self._table(HISTORY_TABLE)
            .select(f"app_id, timestamp, {APPS_TABLE}(name, url, icon)")
            .eq("user_id", user_id)
        )

    def _to_records(self, user_id: str, rows: list[dict]) -> list[AccessRecord]:
        records = []
        for row in rows:
            app = row.get(APPS_TABLE) or {}
            records.append(
                AccessRecord(
                    user_id=user_id,
                    app_id=row["app_id"],
                    name=str(app.get("name", "")),
                    url=str(app.get("url", "")),
                    icon=str(app.get("icon") or ""),
                    timestamp=_to_epoch(row.get("timestamp")) or 0.0,
                )
            )
        return records

    def get_recent_apps(
        self, user_id: str, limit: int = DEFAULT_RECENT_LIMIT
    ) -> list[App]:
        with backend_errors(logger, "Error getting recent apps for user %s", user_id):
            result = (
                self._history_query(user_id)
                .order("timestamp", desc=True)
                .limit(limit * RECENT_OVERFETCH)
                .execute()
            )
            return dedupe_recent(self._to_records(user_id, result.data or []), limit)

    def get_access_history(
        self, user_id: str, since: Optional[float] = None
    ) -> list[AccessRecord]:
        with backend_errors(logger, "Error getting access history for user %s", user_id):
            query = self._history_query(user_id)
            if since is not None:
                query = query.gte("timestamp", since)
            result = query.order("timestamp", desc=True).execute()
            return self._to_records(user_id, result.data or [])

    def search_apps(self, user_id: str, term: str) -> list[App]:
        results: list[App] = []
        for category in self.get_categories(user_id):
            results.extend(app for app in category.apps if matches_term(app, term))
        return results

    def get_app_config(self) -> dict:
        with backend_errors(logger, "Error getting application configuration"):
            result = (
                self._table(CONFIG_TABLE)
                .select("value")
                .eq("key", APP_CONFIG_KEY)
                .limit(1)
                .execute()
            )
            if result.data:
                return dict(result.data[0]["value"] or {})
            config = dict(self.default_config)
            self._table(CONFIG_TABLE).insert(
                {"key": APP_CONFIG_KEY, "value": config}
            ).execute()
            return config

    def update_app_config(self, changes: dict) -> dict:
        merged = {**self.get_app_config(), **changes}
        with backend_errors(logger, "Error updating application configuration"):
            self._table(CONFIG_TABLE).upsert(
                {"key": APP_CONFIG_KEY, "value": merged}, on_conflict="key"
            ).execute()
        return merged

    def _roles(self) -> dict[str, str]:
        result = self._table(USER_ROLES_TABLE).select("user_id, role").execute()
        return {row["user_id"]: row["role"] for row in result.data or []}

    def _role_of(self, user_id: str) -> Optional[str]:
        result = (
            self._table(USER_ROLES_TABLE)
            .select("role")
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        return result.data[0]["role"] if result.data else None

    def _auth_user(self, user_id: str) -> Any:
        """Return the GoTrue user or None when the id is unknown."""
        try:
            response = self.client.auth.admin.get_user_by_id(user_id)
        except AuthApiError as exc:
            if exc.status == 404:
                return None
            raise
        return response.user if response else None

    def _require_auth_user(self, user_id: str) -> Any:
        auth_user = self._auth_user(user_id)
        if not auth_user:
            raise NotFoundError(f"User {user_id} not found")
        return auth_user

    def get_users(self) -> list[User]:
        with backend_errors(logger, "Error listing Supabase users"):
            auth_users = []
            page = 1
            while True:
                batch = self.client.auth.admin.list_users(
                    page=page, per_page=USERS_PAGE_SIZE
                )
                auth_users.extend(batch)
                if len(batch) < USERS_PAGE_SIZE:
                    break
                page += 1
            roles = self._roles()
        logger.info("Found %d users in Supabase Auth", len(auth_users))
        return [_to_user(u, roles.get(u.id)) for u in auth_users]

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        with backend_errors(logger, "Error getting user %s", user_id):
            auth_user = self._auth_user(user_id)
            if not auth_user:
                return None
            return _to_user(auth_user, self._role_of(user_id))

    def create_user(
        self, username: str, email: str, role: UserRole = UserRole.USER
    ) -> User:
        with backend_errors(logger, "Error creating user %s", email):
            response = self.client.auth.admin.create_user(
                {
                    "email": email,
                    "email_confirm": True,
                    "user_metadata": {"username": username, "disabled": False},
                }
            )
            auth_user = response.user
            self._table(USER_ROLES_TABLE).upsert(
                {"user_id": auth_user.id, "role": role.value}, on_conflict="user_id"
            ).execute()
        logger.info("Created user %s with role %s", auth_user.id, role.value)
        return _to_user(auth_user, role.value)

    def update_user_role(self, user_id: str, role: UserRole) -> User:
        logger.info("Updating role of user %s to %s", user_id, role.value)
        with backend_errors(logger, "Error updating role of user %s", user_id):
            auth_user = self._require_auth_user(user_id)
            self._table(USER_ROLES_TABLE).upsert(
                {"user_id": user_id, "role": role.value}, on_conflict="user_id"
            ).execute()
            return _to_user(auth_user, role.value)

    def toggle_user_status(self, user_id: str, disabled: bool) -> User:
        logger.info("%s user %s", "Disabling" if disabled else "Enabling", user_id)
        with backend_errors(logger, "Error updating status of user %s", user_id):
            auth_user = self._require_auth_user(user_id)
            metadata = {**(auth_user.user_metadata or {}), "disabled": disabled}
            response = self.client.auth.admin.update_user_by_id(
                user_id,
                {
                    "ban_duration": DISABLED_BAN_DURATION if disabled else "none",
                    "user_metadata": metadata,
                },
            )
            return _to_user(response.user, self._role_of(user_id))

    def delete_user(self, user_id: str) -> None:
        logger.info("Deleting user %s", user_id)
        with backend_errors(logger, "Error deleting user %s", user_id):
            self._require_auth_user(user_id)
            self.client.auth.admin.delete_user(user_id)
            self._table(USER_ROLES_TABLE).delete().eq("user_id", user_id).execute()
            categories = (
                self._table(CATEGORIES_TABLE).select("id").eq("user_id", user_id).execute()
            )
            category_ids = [row["id"] for row in categories.data or []]
            if category_ids:
                self._table(APPS_TABLE).delete().in_("category_id", category_ids).execute()
            self._table(FAVORITES_TABLE).delete().eq("user_id", user_id).execute()
            self._table(HISTORY_TABLE).delete().eq("user_id", user_id).execute()
            self._table(CATEGORIES_TABLE).delete().eq("user_id", user_id).execute()

    def has_users(self) -> bool:
        with backend_errors(logger, "Error checking for users"):
            return len(self.client.auth.admin.list_users(page=1, per_page=1)) > 0

    def check_connection(self) -> ConnectionCheck:
        result = ConnectionCheck()
        try:
            self._table(CONFIG_TABLE).select("key").limit(1).execute()
            result.connection = True
            result.read = True
            self._table(CONFIG_TABLE).upsert(
                {"key": CONNECTION_CHECK_KEY, "value": {"timestamp": time.time()}},
                on_conflict="key",
            ).execute()
            result.write = True
        except Exception as exc:
            logger.warning("Supabase connection check failed: %s", exc)
            result.error = str(exc)
        return result
