"""
SDK client construction for the storage backends.

Clients are built explicitly from settings and handed to the adapters; the
process entry point owns their lifecycle.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

import firebase_admin
from firebase_admin import credentials, firestore
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from supabase import Client, create_client

logger = logging.getLogger(__name__)

DEFAULT_FIREBASE_APP = "[DEFAULT]"


@dataclass
class FirebaseClients:
    """Firebase Admin app plus its Firestore client."""

    app: firebase_admin.App
    db: Any


def create_firebase_clients(
    service_account: Optional[str] = None,
    project_id: Optional[str] = None,
    app_name: str = DEFAULT_FIREBASE_APP,
) -> FirebaseClients:
    """
    Initialize (or reuse) a Firebase Admin app.

    `service_account` is the JSON text of a service-account key; without it
    Application Default Credentials are used.
    """
    try:
        app = firebase_admin.get_app(app_name)
    except ValueError:
        options = {"projectId": project_id} if project_id else None
        if service_account:
            try:
                cred = credentials.Certificate(json.loads(service_account))
            except ValueError as exc:
                raise ValueError(
                    "FIREBASE_SERVICE_ACCOUNT is not a valid service account JSON"
                ) from exc
        else:
            cred = credentials.ApplicationDefault()
        app = firebase_admin.initialize_app(cred, options, name=app_name)
        logger.info("Initialized Firebase app %s", app.name)
    return FirebaseClients(app=app, db=firestore.client(app))


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_sql_engine(database_url: Optional[str]) -> Engine:
    """
    Build a SQLAlchemy engine. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """
    if not database_url:
        raise ValueError("DATABASE_URL is required for PostgresStorage")
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        # SQLite only honours ON DELETE CASCADE with this pragma.
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine
    return create_engine(
        database_url,
        future=True,
        pool_pre_ping=True,
        pool_recycle=1800,
    )


def create_supabase_client(url: Optional[str], key: Optional[str]) -> Client:
    if not url or not key:
        raise ValueError(
            "SUPABASE_URL and SUPABASE_KEY are required for SupabaseStorage"
        )
    return create_client(url, key)
