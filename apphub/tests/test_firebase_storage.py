import unittest
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from firebase_admin import auth as firebase_auth

from apphub.firebase_storage import FirebaseStorage
from apphub.storage import NotFoundError, StorageError
from apphub.tests.fakes import FakeFirestore
from apphub.types import App, UserRole


def user_record(uid, email, role=None, disabled=False, display_name=None):
    return SimpleNamespace(
        uid=uid,
        email=email,
        display_name=display_name,
        disabled=disabled,
        custom_claims={"role": role} if role else None,
        user_metadata=SimpleNamespace(creation_timestamp=1_700_000_000_000),
    )


class FirebaseStorageCatalogTests(unittest.TestCase):
    def setUp(self):
        self.db = FakeFirestore()
        self.storage = FirebaseStorage(self.db)
        self.category = self.storage.create_category("u1", "Productivity")
        self.github = self.storage.create_app(
            "u1", self.category.id, App(name="GitHub", url="https://github.com")
        )

    def test_category_document_embeds_apps(self):
        stored = self.db.docs[f"users/u1/categories/{self.category.id}"]
        self.assertEqual(stored["name"], "Productivity")
        self.assertEqual(stored["apps"][0]["url"], "https://github.com")

        categories = self.storage.get_categories("u1")
        self.assertEqual(len(categories), 1)
        self.assertEqual(categories[0].apps[0].name, "GitHub")

    def test_new_category_has_no_apps(self):
        category = self.storage.create_category("u1", "Empty")
        self.assertEqual(self.storage.get_apps("u1", category.id), [])

    def test_delete_category(self):
        self.storage.delete_category("u1", self.category.id)
        self.assertEqual(self.storage.get_apps("u1", self.category.id), [])
        with self.assertRaises(NotFoundError):
            self.storage.delete_category("u1", self.category.id)

    def test_update_category_does_not_steal_apps(self):
        other = self.storage.create_category("u1", "Other")
        self.storage.update_category("u1", other.id, apps=[self.github])

        moved = self.db.docs[f"users/u1/categories/{other.id}"]["apps"]
        self.assertEqual(len(moved), 1)
        self.assertNotEqual(moved[0]["id"], self.github.id)
        self.assertIsNotNone(
            self.storage.get_app_by_id("u1", self.category.id, self.github.id)
        )

        self.storage.update_category("u1", self.category.id, apps=[self.github])
        kept = self.db.docs[f"users/u1/categories/{self.category.id}"]["apps"]
        self.assertEqual([a["id"] for a in kept], [self.github.id])


    def test_update_and_delete_app(self):
        updated = self.storage.update_app(
            "u1", self.category.id, self.github.id, {"description": "Code hosting"}
        )
        self.assertEqual(updated.id, self.github.id)
        fetched = self.storage.get_app_by_id("u1", self.category.id, self.github.id)
        self.assertEqual(fetched.description, "Code hosting")

        self.storage.delete_app("u1", self.category.id, self.github.id)
        self.assertEqual(self.storage.get_apps("u1", self.category.id), [])

    def test_favorites_store_snapshot(self):
        self.storage.toggle_favorite("u1", self.github.id, True)
        self.assertTrue(self.storage.is_favorite("u1", self.github.id))
        favorite = self.db.docs[f"users/u1/favorites/{self.github.id}"]
        self.assertEqual(favorite["name"], "GitHub")
        self.assertIn("timestamp", favorite)
        self.assertEqual(
            [a.id for a in self.storage.get_favorites("u1")], [self.github.id]
        )

        self.storage.toggle_favorite("u1", self.github.id, False)
        self.assertFalse(self.storage.is_favorite("u1", self.github.id))

    def test_recent_apps_deduplicated(self):
        docs = self.storage.create_app(
            "u1", self.category.id, App(name="Docs", url="https://docs.example.com")
        )
        for app_id in (self.github.id, docs.id, docs.id, self.github.id):
            self.storage.record_access("u1", app_id)
        recent = self.storage.get_recent_apps("u1")
        self.assertEqual([a.id for a in recent], [self.github.id, docs.id])
        self.assertEqual(len(self.storage.get_recent_apps("u1", limit=1)), 1)

    def test_access_history_since(self):
        self.storage.record_access("u1", self.github.id)
        first = self.storage.get_access_history("u1")[0]
        self.storage.record_access("u1", self.github.id)
        self.assertEqual(len(self.storage.get_access_history("u1")), 2)
        later = self.storage.get_access_history("u1", since=first.timestamp + 0.0005)
        self.assertEqual(len(later), 1)

    def test_record_access_unknown_app(self):
        with self.assertRaises(NotFoundError):
            self.storage.record_access("u1", "missing")

    def test_search(self):
        self.assertEqual([a.name for a in self.storage.search_apps("u1", "hub")], ["GitHub"])

    def test_config_created_with_defaults(self):
        storage = FirebaseStorage(self.db, default_config={"showRegisterTab": False})
        self.assertEqual(storage.get_app_config(), {"showRegisterTab": False})
        self.assertEqual(self.db.docs["config/appConfig"], {"showRegisterTab": False})
        self.assertEqual(
            storage.update_app_config({"showRegisterTab": True}),
            {"showRegisterTab": True},
        )

    def test_check_connection(self):
        check = self.storage.check_connection()
        self.assertTrue(check.read)
        self.assertTrue(check.write)
        self.assertIn("config/connectionCheck", self.db.docs)

    def test_check_connection_reports_error(self):
        db = MagicMock()
        db.collection.side_effect = RuntimeError("unreachable")
        check = FirebaseStorage(db).check_connection()
        self.assertFalse(check.connection)
        self.assertEqual(check.error, "unreachable")

    def test_backend_failure_wrapped(self):
        db = MagicMock()
        db.collection.side_effect = RuntimeError("boom")
        with self.assertRaises(StorageError):
            FirebaseStorage(db).get_categories("u1")


class FirebaseStorageUserTests(unittest.TestCase):
    def setUp(self):
        patcher = patch("apphub.firebase_storage.auth")
        self.auth = patcher.start()
        self.addCleanup(patcher.stop)
        self.auth.UserNotFoundError = firebase_auth.UserNotFoundError
        self.db = FakeFirestore()
        self.app = object()
        self.storage = FirebaseStorage(self.db, app=self.app)

    def test_get_users_reads_claims(self):
        page = MagicMock()
        page.iterate_all.return_value = [
            user_record("a", "admin@example.com", role="admin"),
            user_record("b", "bob@example.com", display_name="Bob", disabled=True),
        ]
        self.auth.list_users.return_value = page

        users = self.storage.get_users()
        self.assertEqual([u.role for u in users], [UserRole.ADMIN, UserRole.USER])
        self.assertEqual(users[0].username, "admin")
        self.assertEqual(users[1].username, "Bob")
        self.assertTrue(users[1].disabled)
        self.assertEqual(users[0].created_at, 1_700_000_000.0)

    def test_get_user_not_found_returns_none(self):
        self.auth.get_user.side_effect = firebase_auth.UserNotFoundError("missing")
        self.assertIsNone(self.storage.get_user_by_id("nobody"))

    def test_update_role_keeps_other_claims(self):
        record = user_record("a", "a@example.com", role="user")
        record.custom_claims["tier"] = "gold"
        self.auth.get_user.return_value = record

        self.storage.update_user_role("a", UserRole.ADMIN)
        self.auth.set_custom_user_claims.assert_called_once_with(
            "a", {"role": "admin", "tier": "gold"}, app=self.app
        )

    def test_update_role_unknown_user(self):
        self.auth.get_user.side_effect = firebase_auth.UserNotFoundError("missing")
        with self.assertRaises(NotFoundError):
            self.storage.update_user_role("nobody", UserRole.ADMIN)
        self.auth.set_custom_user_claims.assert_not_called()

    def test_toggle_status_uses_auth_record(self):
        self.auth.get_user.return_value = user_record("a", "a@example.com")
        self.auth.update_user.return_value = user_record(
            "a", "a@example.com", disabled=True
        )
        user = self.storage.toggle_user_status("a", True)
        self.assertTrue(user.disabled)
        self.auth.update_user.assert_called_once_with("a", disabled=True, app=self.app)
        # No Firestore mirror of the user record.
        self.assertEqual(self.db.docs, {})

    def test_delete_user_removes_firestore_data(self):
        self.auth.get_user.return_value = user_record("u1", "u1@example.com")
        category = self.storage.create_category("u1", "Mine")
        app = self.storage.create_app(
            "u1", category.id, App(name="GitHub", url="https://github.com")
        )
        self.storage.toggle_favorite("u1", app.id, True)
        self.storage.record_access("u1", app.id)

        self.storage.delete_user("u1")
        self.auth.delete_user.assert_called_once_with("u1", app=self.app)
        self.assertEqual(
            [path for path in self.db.docs if path.startswith("users/u1/")], []
        )

    def test_create_user_sets_role_claim(self):
        self.auth.create_user.return_value = user_record("new", "new@example.com")
        self.auth.get_user.return_value = user_record(
            "new", "new@example.com", role="admin"
        )
        user = self.storage.create_user("new", "new@example.com", UserRole.ADMIN)
        self.assertEqual(user.role, UserRole.ADMIN)
        self.auth.set_custom_user_claims.assert_called_once_with(
            "new", {"role": "admin"}, app=self.app
        )

    def test_has_users(self):
        self.auth.list_users.return_value = SimpleNamespace(users=[])
        self.assertFalse(self.storage.has_users())
        self.auth.list_users.return_value = SimpleNamespace(
            users=[user_record("a", "a@example.com")]
        )
        self.assertTrue(self.storage.has_users())

    def test_auth_failure_wrapped(self):
        self.auth.list_users.side_effect = RuntimeError("quota")
        with self.assertRaises(StorageError):
            self.storage.get_users()


if __name__ == "__main__":
    unittest.main()
