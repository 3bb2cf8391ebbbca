"""
SQLAlchemy-backed storage. Targets Postgres; SQLite works for tests.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Float,
    ForeignKey,
    Integer,
    String,
    delete,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from apphub.storage import (
    DEFAULT_RECENT_LIMIT,
    NotFoundError,
    apply_app_changes,
    backend_errors,
    dedupe_recent,
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
)

logger = logging.getLogger(__name__)

APP_CONFIG_KEY = "appConfig"
CONNECTION_CHECK_KEY = "connectionCheck"

Base = declarative_base()


class CategoryRow(Base):
    __tablename__ = "bms_categories"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    created_at = Column(Float, nullable=False)


class AppRow(Base):
    __tablename__ = "bms_apps"

    id = Column(String, primary_key=True)
    category_id = Column(
        String,
        ForeignKey("bms_categories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String, nullable=False)
    url = Column(String, nullable=False)
    icon = Column(String, nullable=False, default="")
    description = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)


class FavoriteRow(Base):
    __tablename__ = "bms_favorites"

    user_id = Column(String, primary_key=True)
    app_id = Column(
        String, ForeignKey("bms_apps.id", ondelete="CASCADE"), primary_key=True
    )
    timestamp = Column(Float, nullable=False)


class AccessRow(Base):
    __tablename__ = "bms_access_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    app_id = Column(
        String, ForeignKey("bms_apps.id", ondelete="CASCADE"), nullable=False
    )
    timestamp = Column(Float, nullable=False, index=True)


class ConfigRow(Base):
    __tablename__ = "bms_config"

    key = Column(String, primary_key=True)
    value = Column(JSON, nullable=False)


class UserRow(Base):
    __tablename__ = "bms_users"

    id = Column(String, primary_key=True)
    username = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True)
    role = Column(String, nullable=False, default=UserRole.USER.value)
    disabled = Column(Boolean, nullable=False, default=False)
    created_at = Column(Float, nullable=False)


def _to_app(row: AppRow) -> App:
    return App(
        id=row.id,
        name=row.name,
        url=row.url,
        icon=row.icon or "",
        description=row.description,
    )


def _to_user(row: UserRow) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        role=UserRole.parse(row.role),
        created_at=row.created_at,
        disabled=bool(row.disabled),
    )


class PostgresStorage:
    """
    Relational storage over the bms_* tables. Tables are created on construction if absent.
    """

    def __init__(self, engine: Engine, default_config: Optional[dict] = None):
        self.engine = engine
        self.default_config = dict(default_config or DEFAULT_APP_CONFIG)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        with backend_errors(logger, "Error initializing database schema"):
            Base.metadata.create_all(self.engine)

    def _category_row(
        self, session: Session, user_id: str, category_id: str
    ) -> Optional[CategoryRow]:
        stmt = select(CategoryRow).where(
            CategoryRow.id == category_id, CategoryRow.user_id == user_id
        )
        return session.execute(stmt).scalar_one_or_none()

    def _require_category_row(
        self, session: Session, user_id: str, category_id: str
    ) -> CategoryRow:
        row = self._category_row(session, user_id, category_id)
        if not row:
            raise NotFoundError(
                f"Category {category_id} not found for user {user_id}"
            )
        return row

    def _apps_for(self, session: Session, category_id: str) -> list[App]:
        stmt = (
            select(AppRow)
            .where(AppRow.category_id == category_id)
            .order_by(AppRow.name)
        )
        return [_to_app(row) for row in session.execute(stmt).scalars()]

    def _user_app_row(
        self, session: Session, user_id: str, app_id: str
    ) -> Optional[AppRow]:
        stmt = (
            select(AppRow)
            .join(CategoryRow, AppRow.category_id == CategoryRow.id)
            .where(AppRow.id == app_id, CategoryRow.user_id == user_id)
        )
        return session.execute(stmt).scalar_one_or_none()

    def _insert_app(self, session: Session, category_id: str, app: App) -> App:
        valid = validate_app(app)
        valid.id = valid.id or new_id()
        session.add(
            AppRow(
                id=valid.id,
                category_id=category_id,
                name=valid.name,
                url=valid.url,
                icon=valid.icon,
                description=valid.description,
                created_at=time.time(),
            )
        )
        return valid

    def get_categories(self, user_id: str) -> list[Category]:
        with backend_errors(logger, "Error getting categories for user %s", user_id):
            with self.Session() as session:
                stmt = (
                    select(CategoryRow)
                    .where(CategoryRow.user_id == user_id)
                    .order_by(CategoryRow.name)
                )
                categories = [
                    Category(
                        id=row.id, name=row.name, apps=self._apps_for(session, row.id)
                    )
                    for row in session.execute(stmt).scalars()
                ]
        logger.debug("Found %d categories for user %s", len(categories), user_id)
        return categories

    def get_category_by_id(
        self, user_id: str, category_id: str
    ) -> Optional[Category]:
        with backend_errors(logger, "Error getting category %s", category_id):
            with self.Session() as session:
                row = self._category_row(session, user_id, category_id)
                if not row:
                    return None
                return Category(
                    id=row.id, name=row.name, apps=self._apps_for(session, row.id)
                )

    def create_category(
        self, user_id: str, name: str, apps: Optional[list[App]] = None
    ) -> Category:
        category_name = validate_name(name, "category name")
        with backend_errors(logger, "Error creating category for user %s", user_id):
            with self.Session() as session:
                category_id = new_id()
                session.add(
                    CategoryRow(
                        id=category_id,
                        user_id=user_id,
                        name=category_name,
                        created_at=time.time(),
                    )
                )
                session.flush()
                created_apps = []
                for app in apps or []:
                    fresh = App(
                        name=app.name,
                        url=app.url,
                        icon=app.icon,
                        description=app.description,
                    )
                    created_apps.append(self._insert_app(session, category_id, fresh))
                session.commit()
        return Category(id=category_id, name=category_name, apps=created_apps)

    def update_category(
        self,
        user_id: str,
        category_id: str,
        *,
        name: Optional[str] = None,
        apps: Optional[list[App]] = None,
    ) -> Category:
        with backend_errors(logger, "Error updating category %s", category_id):
            with self.Session() as session:
                row = self._require_category_row(session, user_id, category_id)
                if name is not None:
                    row.name = validate_name(name, "category name")
                if apps is not None:
                    # Replacing the list is delete-all then insert-each.
                    owned = session.execute(
                        select(AppRow.id).where(AppRow.category_id == category_id)
                    ).scalars()
                    validated = replacement_apps(owned, apps)
                    session.execute(
                        delete(AppRow).where(AppRow.category_id == category_id)
                    )
                    for app in validated:
                        self._insert_app(session, category_id, app)
                session.commit()
                return Category(
                    id=row.id, name=row.name, apps=self._apps_for(session, row.id)
                )

    def delete_category(self, user_id: str, category_id: str) -> None:
        with backend_errors(logger, "Error deleting category %s", category_id):
            with self.Session() as session:
                self._require_category_row(session, user_id, category_id)
                # Apps, favorites and history go with it via ON DELETE CASCADE.
                session.execute(
                    delete(CategoryRow).where(
                        CategoryRow.id == category_id, CategoryRow.user_id == user_id
                    )
                )
                session.commit()

    def get_apps(self, user_id: str, category_id: str) -> list[App]:
        with backend_errors(logger, "Error getting apps for category %s", category_id):
            with self.Session() as session:
                if not self._category_row(session, user_id, category_id):
                    return []
                return self._apps_for(session, category_id)

    def get_app_by_id(
        self, user_id: str, category_id: str, app_id: str
    ) -> Optional[App]:
        with backend_errors(logger, "Error getting app %s", app_id):
            with self.Session() as session:
                row = self._user_app_row(session, user_id, app_id)
                if not row or row.category_id != category_id:
                    return None
                return _to_app(row)

    def create_app(self, user_id: str, category_id: str, app: App) -> App:
        with backend_errors(logger, "Error creating app in category %s", category_id):
            with self.Session() as session:
                self._require_category_row(session, user_id, category_id)
                fresh = App(
                    name=app.name,
                    url=app.url,
                    icon=app.icon,
                    description=app.description,
                )
                created = self._insert_app(session, category_id, fresh)
                session.commit()
                return created

    def update_app(
        self, user_id: str, category_id: str, app_id: str, changes: dict
    ) -> App:
        with backend_errors(logger, "Error updating app %s", app_id):
            with self.Session() as session:
                self._require_category_row(session, user_id, category_id)
                row = session.get(AppRow, app_id)
                if not row or row.category_id != category_id:
                    raise NotFoundError(
                        f"App {app_id} not found in category {category_id}"
                    )
                updated = apply_app_changes(_to_app(row), changes)
                row.name = updated.name
                row.url = updated.url
                row.icon = updated.icon
                row.description = updated.description
                session.commit()
                return updated

    def delete_app(self, user_id: str, category_id: str, app_id: str) -> None:
        with backend_errors(logger, "Error deleting app %s", app_id):
            with self.Session() as session:
                self._require_category_row(session, user_id, category_id)
                result = session.execute(
                    delete(AppRow).where(
                        AppRow.id == app_id, AppRow.category_id == category_id
                    )
                )
                if not result.rowcount:
                    raise NotFoundError(
                        f"App {app_id} not found in category {category_id}"
                    )
                session.commit()

    def toggle_favorite(self, user_id: str, app_id: str, is_favorite: bool) -> None:
        action = "adding" if is_favorite else "removing"
        with backend_errors(logger, "Error %s favorite %s", action, app_id):
            with self.Session() as session:
                existing = session.get(FavoriteRow, (user_id, app_id))
                if is_favorite:
                    if existing:
                        return
                    if not self._user_app_row(session, user_id, app_id):
                        raise NotFoundError(f"App {app_id} not found")
                    session.add(
                        FavoriteRow(
                            user_id=user_id, app_id=app_id, timestamp=time.time()
                        )
                    )
                elif existing:
                    session.delete(existing)
                session.commit()

    def get_favorites(self, user_id: str) -> list[App]:
        with backend_errors(logger, "Error getting favorites for user %s", user_id):
            with self.Session() as session:
                stmt = (
                    select(AppRow)
                    .join(FavoriteRow, FavoriteRow.app_id == AppRow.id)
                    .where(FavoriteRow.user_id == user_id)
                    .order_by(FavoriteRow.timestamp.desc())
                )
                return [_to_app(row) for row in session.execute(stmt).scalars()]

    def is_favorite(self, user_id: str, app_id: str) -> bool:
        with backend_errors(logger, "Error checking favorite %s", app_id):
            with self.Session() as session:
                return session.get(FavoriteRow, (user_id, app_id)) is not None

    def record_access(self, user_id: str, app_id: str) -> None:
        with backend_errors(logger, "Error recording access to %s", app_id):
            with self.Session() as session:
                if not self._user_app_row(session, user_id, app_id):
                    raise NotFoundError(f"App {app_id} not found")
                session.add(
                    AccessRow(user_id=user_id, app_id=app_id, timestamp=time.time())
                )
                session.commit()

    def get_recent_apps(
        self, user_id: str, limit: int = DEFAULT_RECENT_LIMIT
    ) -> list[App]:
        if limit <= 0:
            return []
        with backend_errors(logger, "Error getting recent apps for user %s", user_id):
            with self.Session() as session:
                last_access = func.max(AccessRow.timestamp).label("last_access")
                stmt = (
                    select(
                        AppRow.id,
                        AppRow.name,
                        AppRow.url,
                        AppRow.icon,
                        AppRow.description,
                        last_access,
                    )
                    .join(AccessRow, AccessRow.app_id == AppRow.id)
                    .where(AccessRow.user_id == user_id)
                    .group_by(
                        AppRow.id,
                        AppRow.name,
                        AppRow.url,
                        AppRow.icon,
                        AppRow.description,
                    )
                    .order_by(last_access.desc())
                    .limit(limit)
                )
                return [
                    App(
                        id=row.id,
                        name=row.name,
                        url=row.url,
                        icon=row.icon or "",
                        description=row.description,
                    )
                    for row in session.execute(stmt)
                ]

    def get_access_history(
        self, user_id: str, since: Optional[float] = None
    ) -> list[AccessRecord]:
        with backend_errors(logger, "Error getting access history for user %s", user_id):
            with self.Session() as session:
                stmt = (
                    select(AccessRow, AppRow)
                    .join(AppRow, AccessRow.app_id == AppRow.id)
                    .where(AccessRow.user_id == user_id)
                    .order_by(AccessRow.timestamp.desc(), AccessRow.id.desc())
                )
                if since is not None:
                    stmt = stmt.where(AccessRow.timestamp >= since)
                return [
                    AccessRecord(
                        user_id=access.user_id,
                        app_id=access.app_id,
                        name=app.name,
                        url=app.url,
                        icon=app.icon or "",
                        timestamp=access.timestamp,
                    )
                    for access, app in session.execute(stmt)
                ]

    def search_apps(self, user_id: str, term: str) -> list[App]:
        with backend_errors(logger, "Error searching apps with term %r", term):
            with self.Session() as session:
                stmt = (
                    select(AppRow)
                    .join(CategoryRow, AppRow.category_id == CategoryRow.id)
                    .where(
                        CategoryRow.user_id == user_id,
                        or_(
                            AppRow.name.icontains(term, autoescape=True),
                            AppRow.description.icontains(term, autoescape=True),
                        ),
                    )
                    .order_by(AppRow.name)
                )
                return [_to_app(row) for row in session.execute(stmt).scalars()]

    def get_app_config(self) -> dict:
        with backend_errors(logger, "Error getting application configuration"):
            with self.Session() as session:
                row = session.get(ConfigRow, APP_CONFIG_KEY)
                if row:
                    return dict(row.value)
                config = dict(self.default_config)
                session.add(ConfigRow(key=APP_CONFIG_KEY, value=config))
                session.commit()
                return dict(config)

    def update_app_config(self, changes: dict) -> dict:
        with backend_errors(logger, "Error updating application configuration"):
            with self.Session() as session:
                row = session.get(ConfigRow, APP_CONFIG_KEY)
                current = dict(row.value) if row else dict(self.default_config)
                merged = {**current, **changes}
                session.merge(ConfigRow(key=APP_CONFIG_KEY, value=merged))
                session.commit()
                return merged

    def get_users(self) -> list[User]:
        with backend_errors(logger, "Error getting users"):
            with self.Session() as session:
                stmt = select(UserRow).order_by(UserRow.created_at)
                return [_to_user(row) for row in session.execute(stmt).scalars()]

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        with backend_errors(logger, "Error getting user %s", user_id):
            with self.Session() as session:
                row = session.get(UserRow, user_id)
                return _to_user(row) if row else None

    def create_user(
        self, username: str, email: str, role: UserRole = UserRole.USER
    ) -> User:
        with backend_errors(logger, "Error creating user %s", email):
            with self.Session() as session:
                row = UserRow(
                    id=new_id(),
                    username=username,
                    email=email,
                    role=role.value,
                    disabled=False,
                    created_at=time.time(),
                )
                session.add(row)
                session.commit()
                logger.info("Created user %s with role %s", row.id, role.value)
                return _to_user(row)

    def _update_user(self, user_id: str, **values) -> User:
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            if not row:
                raise NotFoundError(f"User {user_id} not found")
            for key, value in values.items():
                setattr(row, key, value)
            session.commit()
            return _to_user(row)

    def update_user_role(self, user_id: str, role: UserRole) -> User:
        logger.info("Updating role of user %s to %s", user_id, role.value)
        with backend_errors(logger, "Error updating role of user %s", user_id):
            return self._update_user(user_id, role=role.value)

    def toggle_user_status(self, user_id: str, disabled: bool) -> User:
        logger.info("%s user %s", "Disabling" if disabled else "Enabling", user_id)
        with backend_errors(logger, "Error updating status of user %s", user_id):
            return self._update_user(user_id, disabled=disabled)

    def delete_user(self, user_id: str) -> None:
        logger.info("Deleting user %s", user_id)
        with backend_errors(logger, "Error deleting user %s", user_id):
            with self.Session() as session:
                row = session.get(UserRow, user_id)
                if not row:
                    raise NotFoundError(f"User {user_id} not found")
                session.execute(delete(FavoriteRow).where(FavoriteRow.user_id == user_id))
                session.execute(delete(AccessRow).where(AccessRow.user_id == user_id))
                session.execute(delete(CategoryRow).where(CategoryRow.user_id == user_id))
                session.delete(row)
                session.commit()

    def has_users(self) -> bool:
        with backend_errors(logger, "Error checking for users"):
            with self.Session() as session:
                return session.execute(select(UserRow.id).limit(1)).first() is not None

    def check_connection(self) -> ConnectionCheck:
        result = ConnectionCheck()
        try:
            with self.Session() as session:
                session.execute(select(ConfigRow.key).limit(1)).all()
                result.connection = True
                result.read = True
                session.merge(
                    ConfigRow(key=CONNECTION_CHECK_KEY, value={"timestamp": time.time()})
                )
                session.commit()
                result.write = True
        except Exception as exc:
            logger.warning("Storage connection check failed: %s", exc)
            result.error = str(exc)
        return result
