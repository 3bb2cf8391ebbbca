"""
Shared data shapes for categories, apps, users and access history.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Optional

DEFAULT_APP_CONFIG = {"showRegisterTab": True}


class UserRole(StrEnum):
    ADMIN = "admin"
    USER = "user"

    @classmethod
    def parse(cls, value: Optional[str]) -> "UserRole":
        """Unknown or missing roles degrade to USER."""
        return cls.ADMIN if value == cls.ADMIN.value else cls.USER


@dataclass
class App:
    name: str
    url: str
    icon: str = ""
    description: Optional[str] = None
    id: Optional[str] = None

    def as_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict, app_id: Optional[str] = None) -> "App":
        return cls(
            id=app_id if app_id is not None else data.get("id"),
            name=str(data.get("name", "")),
            url=str(data.get("url", "")),
            icon=str(data.get("icon") or ""),
            description=data.get("description"),
        )


@dataclass
class Category:
    id: str
    name: str
    apps: list[App] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "apps": [app.as_dict() for app in self.apps],
        }


@dataclass
class User:
    id: str
    username: str
    email: str
    role: UserRole = UserRole.USER
    created_at: Optional[float] = None
    disabled: bool = False

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "role": self.role.value,
            "created_at": self.created_at,
            "disabled": self.disabled,
        }


@dataclass
class AccessRecord:
    user_id: str
    app_id: str
    name: str = ""
    url: str = ""
    icon: str = ""
    timestamp: float = field(default_factory=lambda: time.time())


@dataclass
class ConnectionCheck:
    """Outcome of a read/write probe against the configured backend."""

    connection: bool = False
    read: bool = False
    write: bool = False
    error: Optional[str] = None


def username_from(display_name: Optional[str], email: Optional[str]) -> str:
    if display_name:
        return display_name
    if email:
        return email.split("@")[0]
    return ""
