"""
HTTP routes for the AppHub API.
"""

from __future__ import annotations

import logging
import platform
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from apphub.config import Settings
from apphub.dependencies import get_request_settings, get_request_storage
from apphub.schemas import (
    AppPayload,
    AppResponse,
    AppUpdateRequest,
    CategoryCreateRequest,
    CategoryResponse,
    CategoryUpdateRequest,
    ConfigUpdateRequest,
    ConnectionCheckResponse,
    CreateUserRequest,
    FavoriteStatusResponse,
    HealthResponse,
    ServerInfoResponse,
    StatisticsResponse,
    TopAppResponse,
    UpdateRoleRequest,
    UpdateStatusRequest,
    UserResponse,
)
from apphub.stats import Period, compute_usage_stats, period_start
from apphub.storage import DEFAULT_RECENT_LIMIT, AppStorage

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
def health():
    return HealthResponse(status="ok")


@router.get("/server-info", response_model=ServerInfoResponse)
def server_info(settings: Settings = Depends(get_request_settings)):
    return ServerInfoResponse(
        python_version=platform.python_version(),
        environment=settings.environment,
        server_time=datetime.now(timezone.utc),
    )


@router.get("/storage/check", response_model=ConnectionCheckResponse)
def storage_check(storage: AppStorage = Depends(get_request_storage)):
    return ConnectionCheckResponse.from_check(storage.check_connection())


@router.get("/config")
def get_config(storage: AppStorage = Depends(get_request_storage)) -> dict:
    return storage.get_app_config()


@router.patch("/config")
def update_config(
    payload: ConfigUpdateRequest,
    storage: AppStorage = Depends(get_request_storage),
) -> dict:
    changes = payload.model_dump(by_alias=True, exclude_unset=True)
    return storage.update_app_config(changes)


# User administration


@router.get("/users", response_model=list[UserResponse])
def list_users(storage: AppStorage = Depends(get_request_storage)):
    return [UserResponse.from_user(user) for user in storage.get_users()]


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(
    payload: CreateUserRequest,
    storage: AppStorage = Depends(get_request_storage),
):
    user = storage.create_user(payload.username, payload.email, payload.role)
    return UserResponse.from_user(user)


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(user_id: str, storage: AppStorage = Depends(get_request_storage)):
    user = storage.get_user_by_id(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return UserResponse.from_user(user)


@router.patch("/users/{user_id}/role", response_model=UserResponse)
def update_user_role(
    user_id: str,
    payload: UpdateRoleRequest,
    storage: AppStorage = Depends(get_request_storage),
):
    if not storage.get_user_by_id(user_id):
        raise HTTPException(status_code=404, detail="User not found")
    return UserResponse.from_user(storage.update_user_role(user_id, payload.role))


@router.patch("/users/{user_id}/status", response_model=UserResponse)
def update_user_status(
    user_id: str,
    payload: UpdateStatusRequest,
    storage: AppStorage = Depends(get_request_storage),
):
    if not storage.get_user_by_id(user_id):
        raise HTTPException(status_code=404, detail="User not found")
    user = storage.toggle_user_status(user_id, payload.disabled)
    return UserResponse.from_user(user)


@router.delete("/users/{user_id}", status_code=204, response_class=Response)
def delete_user(user_id: str, storage: AppStorage = Depends(get_request_storage)):
    if not storage.get_user_by_id(user_id):
        raise HTTPException(status_code=404, detail="User not found")
    storage.delete_user(user_id)
    return Response(status_code=204)


# Catalog


@router.get("/users/{user_id}/categories", response_model=list[CategoryResponse])
def list_categories(user_id: str, storage: AppStorage = Depends(get_request_storage)):
    return [CategoryResponse.from_category(c) for c in storage.get_categories(user_id)]


@router.post(
    "/users/{user_id}/categories", response_model=CategoryResponse, status_code=201
)
def create_category(
    user_id: str,
    payload: CategoryCreateRequest,
    storage: AppStorage = Depends(get_request_storage),
):
    category = storage.create_category(
        user_id, payload.name, [app.to_app() for app in payload.apps]
    )
    return CategoryResponse.from_category(category)


@router.get(
    "/users/{user_id}/categories/{category_id}", response_model=CategoryResponse
)
def get_category(
    user_id: str,
    category_id: str,
    storage: AppStorage = Depends(get_request_storage),
):
    category = storage.get_category_by_id(user_id, category_id)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return CategoryResponse.from_category(category)


@router.patch(
    "/users/{user_id}/categories/{category_id}", response_model=CategoryResponse
)
def update_category(
    user_id: str,
    category_id: str,
    payload: CategoryUpdateRequest,
    storage: AppStorage = Depends(get_request_storage),
):
    apps = [app.to_app() for app in payload.apps] if payload.apps is not None else None
    category = storage.update_category(
        user_id, category_id, name=payload.name, apps=apps
    )
    return CategoryResponse.from_category(category)


@router.delete(
    "/users/{user_id}/categories/{category_id}",
    status_code=204,
    response_class=Response,
)
def delete_category(
    user_id: str,
    category_id: str,
    storage: AppStorage = Depends(get_request_storage),
):
    storage.delete_category(user_id, category_id)
    return Response(status_code=204)


@router.get(
    "/users/{user_id}/categories/{category_id}/apps",
    response_model=list[AppResponse],
)
def list_apps(
    user_id: str,
    category_id: str,
    storage: AppStorage = Depends(get_request_storage),
):
    return [AppResponse.from_app(a) for a in storage.get_apps(user_id, category_id)]


@router.post(
    "/users/{user_id}/categories/{category_id}/apps",
    response_model=AppResponse,
    status_code=201,
)
def add_app(
    user_id: str,
    category_id: str,
    payload: AppPayload,
    storage: AppStorage = Depends(get_request_storage),
):
    app = storage.create_app(user_id, category_id, payload.to_app())
    return AppResponse.from_app(app)


@router.get(
    "/users/{user_id}/categories/{category_id}/apps/{app_id}",
    response_model=AppResponse,
)
def get_app(
    user_id: str,
    category_id: str,
    app_id: str,
    storage: AppStorage = Depends(get_request_storage),
):
    app = storage.get_app_by_id(user_id, category_id, app_id)
    if not app:
        raise HTTPException(status_code=404, detail="App not found")
    return AppResponse.from_app(app)


@router.patch(
    "/users/{user_id}/categories/{category_id}/apps/{app_id}",
    response_model=AppResponse,
)
def update_app(
    user_id: str,
    category_id: str,
    app_id: str,
    payload: AppUpdateRequest,
    storage: AppStorage = Depends(get_request_storage),
):
    changes = payload.model_dump(exclude_unset=True)
    app = storage.update_app(user_id, category_id, app_id, changes)
    return AppResponse.from_app(app)


@router.delete(
    "/users/{user_id}/categories/{category_id}/apps/{app_id}",
    status_code=204,
    response_class=Response,
)
def delete_app(
    user_id: str,
    category_id: str,
    app_id: str,
    storage: AppStorage = Depends(get_request_storage),
):
    storage.delete_app(user_id, category_id, app_id)
    return Response(status_code=204)


# Favorites, history, search


@router.get("/users/{user_id}/favorites", response_model=list[AppResponse])
def list_favorites(user_id: str, storage: AppStorage = Depends(get_request_storage)):
    return [AppResponse.from_app(app) for app in storage.get_favorites(user_id)]


@router.get(
    "/users/{user_id}/favorites/{app_id}", response_model=FavoriteStatusResponse
)
def favorite_status(
    user_id: str,
    app_id: str,
    storage: AppStorage = Depends(get_request_storage),
):
    return FavoriteStatusResponse(is_favorite=storage.is_favorite(user_id, app_id))


@router.put(
    "/users/{user_id}/favorites/{app_id}", response_model=FavoriteStatusResponse
)
def add_favorite(
    user_id: str,
    app_id: str,
    storage: AppStorage = Depends(get_request_storage),
):
    storage.toggle_favorite(user_id, app_id, True)
    return FavoriteStatusResponse(is_favorite=True)


@router.delete(
    "/users/{user_id}/favorites/{app_id}", response_model=FavoriteStatusResponse
)
def remove_favorite(
    user_id: str,
    app_id: str,
    storage: AppStorage = Depends(get_request_storage),
):
    storage.toggle_favorite(user_id, app_id, False)
    return FavoriteStatusResponse(is_favorite=False)


@router.get("/users/{user_id}/recent", response_model=list[AppResponse])
def recent_apps(
    user_id: str,
    limit: int = Query(DEFAULT_RECENT_LIMIT, ge=1, le=100),
    storage: AppStorage = Depends(get_request_storage),
):
    return [AppResponse.from_app(a) for a in storage.get_recent_apps(user_id, limit)]


@router.post("/users/{user_id}/recent/{app_id}", status_code=204, response_class=Response)
def record_access(
    user_id: str,
    app_id: str,
    storage: AppStorage = Depends(get_request_storage),
):
    storage.record_access(user_id, app_id)
    return Response(status_code=204)


@router.get("/users/{user_id}/search", response_model=list[AppResponse])
def search_apps(
    user_id: str,
    q: str = Query(..., min_length=1),
    storage: AppStorage = Depends(get_request_storage),
):
    return [AppResponse.from_app(a) for a in storage.search_apps(user_id, q)]


@router.get("/users/{user_id}/statistics", response_model=StatisticsResponse)
def statistics(
    user_id: str,
    period: Period = Query("week"),
    storage: AppStorage = Depends(get_request_storage),
):
    records = storage.get_access_history(user_id, since=period_start(period))
    stats = compute_usage_stats(records)
    return StatisticsResponse(
        period=period,
        total_accesses=stats.total_accesses,
        most_active_hour=stats.most_active_hour,
        most_active_day=stats.most_active_day,
        hourly_activity=stats.hourly_activity,
        daily_activity=stats.daily_activity,
        top_apps=[
            TopAppResponse(id=t.id, name=t.name, icon=t.icon, count=t.count)
            for t in stats.top_apps
        ],
    )
