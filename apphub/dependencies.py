"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging

from fastapi import Request

from apphub.clients import (
    create_firebase_clients,
    create_sql_engine,
    create_supabase_client,
)
from apphub.config import Settings, get_settings
from apphub.firebase_storage import FirebaseStorage
from apphub.postgres_storage import PostgresStorage
from apphub.storage import AppStorage, InMemoryStorage
from apphub.supabase_storage import SupabaseStorage

logger = logging.getLogger(__name__)

_storage: AppStorage | None = None


def create_storage(settings: Settings | None = None) -> AppStorage:
    """
    Build the adapter selected by BMS_DATABASE. Unknown values fall back to Firebase.
    """
    settings = settings or get_settings()
    requested = (settings.bms_database or "").strip().lower()
    backend = settings.storage_backend
    if requested != backend:
        logger.warning(
            "Unknown BMS_DATABASE %r, falling back to %s", settings.bms_database, backend
        )
    logger.info("Using %s storage", backend)

    default_config = settings.default_app_config()
    if backend == "memory":
        return InMemoryStorage(default_config)
    if backend == "postgres":
        engine = create_sql_engine(settings.database_url)
        return PostgresStorage(engine, default_config)
    if backend == "supabase":
        client = create_supabase_client(settings.supabase_url, settings.supabase_key)
        return SupabaseStorage(client, default_config)
    clients = create_firebase_clients(
        settings.firebase_service_account, settings.firebase_project_id
    )
    return FirebaseStorage(clients.db, clients.app, default_config)


def get_storage() -> AppStorage:
    """
    Return a singleton storage adapter so every request shares one client.
    """
    global _storage
    if _storage:
        return _storage
    _storage = create_storage()
    return _storage


def reset_storage() -> None:
    global _storage
    _storage = None


def get_request_storage(request: Request) -> AppStorage:
    """Adapter attached to the app by create_app, else the process singleton."""
    storage = getattr(request.app.state, "storage", None)
    if storage is not None:
        return storage
    return get_storage()


def get_request_settings(request: Request) -> Settings:
    settings = getattr(request.app.state, "settings", None)
    return settings if settings is not None else get_settings()
