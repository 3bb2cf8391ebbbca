"""
Create or promote the first administrator for the configured storage backend.

    python scripts/bootstrap_admin.py --email admin@example.com --create
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from apphub.admin import ensure_admin
from apphub.dependencies import create_storage
from apphub.storage import StorageError

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Bootstrap an AppHub administrator")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--user-id", type=str, help="Existing user id to promote")
    target.add_argument("--email", type=str, help="Email of the user to promote")
    parser.add_argument(
        "--username",
        type=str,
        default=None,
        help="Display name when creating the user",
    )
    parser.add_argument(
        "--create",
        action="store_true",
        help="Create the user if no account matches --email",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    storage = create_storage()
    try:
        user = ensure_admin(
            storage,
            user_id=args.user_id,
            email=args.email,
            username=args.username,
            create=args.create,
        )
    except StorageError as exc:
        logger.error("Could not bootstrap admin: %s", exc)
        return 1

    logger.info("User %s (%s) is an admin", user.id, user.email)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
