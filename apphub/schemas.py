"""
Pydantic schemas for the AppHub API. JSON uses camelCase field names.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_validator
from pydantic_core import PydanticCustomError
from pydantic.alias_generators import to_camel

from apphub.types import App, Category, ConnectionCheck, User, UserRole


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HealthResponse(BaseModel):
    status: str = "ok"


class ServerInfoResponse(CamelModel):
    python_version: str
    environment: str
    server_time: datetime


class UserResponse(CamelModel):
    id: str
    username: str
    email: str
    role: UserRole
    created_at: Optional[datetime] = None
    disabled: bool = False

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        created = (
            datetime.fromtimestamp(user.created_at, tz=timezone.utc)
            if user.created_at is not None
            else None
        )
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            role=user.role,
            created_at=created,
            disabled=user.disabled,
        )


class CreateUserRequest(CamelModel):
    username: str = Field(..., min_length=1, max_length=128)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    role: UserRole = UserRole.USER


class UpdateRoleRequest(CamelModel):
    role: UserRole


class UpdateStatusRequest(CamelModel):
    disabled: StrictBool


class AppPayload(CamelModel):
    name: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    icon: str = ""
    description: Optional[str] = None
    id: Optional[str] = None

    def to_app(self) -> App:
        return App(
            id=self.id,
            name=self.name,
            url=self.url,
            icon=self.icon,
            description=self.description,
        )


class AppUpdateRequest(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1)
    url: Optional[str] = Field(default=None, min_length=1)
    icon: Optional[str] = None
    description: Optional[str] = None


class AppResponse(CamelModel):
    id: Optional[str]
    name: str
    url: str
    icon: str = ""
    description: Optional[str] = None

    @classmethod
    def from_app(cls, app: App) -> "AppResponse":
        return cls(**app.as_dict())


class CategoryCreateRequest(CamelModel):
    name: str = Field(..., min_length=1)
    apps: list[AppPayload] = Field(default_factory=list)


class CategoryUpdateRequest(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1)
    apps: Optional[list[AppPayload]] = None


class CategoryResponse(CamelModel):
    id: str
    name: str
    apps: list[AppResponse]

    @classmethod
    def from_category(cls, category: Category) -> "CategoryResponse":
        return cls(
            id=category.id,
            name=category.name,
            apps=[AppResponse.from_app(app) for app in category.apps],
        )


class ConfigUpdateRequest(CamelModel):
    """Shallow merge into the global config; unknown keys are kept."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    show_register_tab: Optional[StrictBool] = None

    @field_validator("show_register_tab")
    @classmethod
    def reject_null_flag(cls, value: Optional[bool]) -> bool:
        # Omitted is fine; an explicit null is not.
        if value is None:
            raise PydanticCustomError("bool_type", "showRegisterTab must be a boolean")
        return value


class FavoriteStatusResponse(CamelModel):
    is_favorite: bool


class ConnectionCheckResponse(BaseModel):
    connection: bool
    read: bool
    write: bool
    error: Optional[str] = None

    @classmethod
    def from_check(cls, check: ConnectionCheck) -> "ConnectionCheckResponse":
        return cls(
            connection=check.connection,
            read=check.read,
            write=check.write,
            error=check.error,
        )


class TopAppResponse(CamelModel):
    id: str
    name: str
    icon: str = ""
    count: int


class StatisticsResponse(CamelModel):
    period: Literal["week", "month", "allTime"]
    total_accesses: int
    most_active_hour: int
    most_active_day: int
    hourly_activity: list[int]
    daily_activity: list[int]
    top_apps: list[TopAppResponse]
