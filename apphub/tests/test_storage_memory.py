import unittest

from apphub.storage import InMemoryStorage, NotFoundError, ValidationError
from apphub.types import App, UserRole


class InMemoryStorageTests(unittest.TestCase):
    def setUp(self):
        self.storage = InMemoryStorage()
        self.category = self.storage.create_category("u1", "Productivity")
        self.github = self.storage.create_app(
            "u1", self.category.id, App(name="GitHub", url="https://github.com")
        )
        self.docs = self.storage.create_app(
            "u1",
            self.category.id,
            App(name="Docs", url="https://docs.example.com", description="Team wiki"),
        )

    def test_new_category_has_no_apps(self):
        category = self.storage.create_category("u1", "Empty")
        self.assertEqual(category.apps, [])
        self.assertEqual(self.storage.get_apps("u1", category.id), [])

    def test_categories_are_scoped_per_user(self):
        self.assertEqual(self.storage.get_categories("u2"), [])
        self.assertIsNone(self.storage.get_category_by_id("u2", self.category.id))

    def test_rejects_bad_input(self):
        with self.assertRaises(ValidationError):
            self.storage.create_category("u1", "   ")
        with self.assertRaises(ValidationError):
            self.storage.create_app(
                "u1", self.category.id, App(name="Bad", url="not a url")
            )
        with self.assertRaises(ValidationError):
            self.storage.create_app(
                "u1", self.category.id, App(name="", url="https://ok.example")
            )

    def test_update_app_keeps_id(self):
        updated = self.storage.update_app(
            "u1", self.category.id, self.github.id, {"name": "GitHub Enterprise"}
        )
        self.assertEqual(updated.id, self.github.id)
        self.assertEqual(updated.url, "https://github.com")
        fetched = self.storage.get_app_by_id("u1", self.category.id, self.github.id)
        self.assertEqual(fetched.name, "GitHub Enterprise")

    def test_update_category_does_not_steal_apps(self):
        other = self.storage.create_category("u1", "Other")
        updated = self.storage.update_category("u1", other.id, apps=[self.github])
        self.assertEqual(len(updated.apps), 1)
        self.assertNotEqual(updated.apps[0].id, self.github.id)
        self.assertIsNotNone(
            self.storage.get_app_by_id("u1", self.category.id, self.github.id)
        )

        kept = self.storage.update_category(
            "u1", self.category.id, apps=[self.docs, self.docs]
        )
        self.assertEqual(kept.apps[0].id, self.docs.id)
        self.assertNotEqual(kept.apps[1].id, self.docs.id)

    def test_failed_update_category_changes_nothing(self):
        with self.assertRaises(ValidationError):
            self.storage.update_category(
                "u1",
                self.category.id,
                name="Work",
                apps=[App(name="Bad", url="not a url")],
            )
        category = self.storage.get_category_by_id("u1", self.category.id)
        self.assertEqual(category.name, "Productivity")
        self.assertEqual(len(category.apps), 2)


    def test_missing_targets_raise_not_found(self):
        with self.assertRaises(NotFoundError):
            self.storage.create_app("u1", "nope", App(name="X", url="https://x.io"))
        with self.assertRaises(NotFoundError):
            self.storage.update_app("u1", self.category.id, "nope", {"name": "X"})
        with self.assertRaises(NotFoundError):
            self.storage.delete_app("u1", self.category.id, "nope")
        with self.assertRaises(NotFoundError):
            self.storage.delete_category("u1", "nope")

    def test_delete_category_removes_apps_and_favorites(self):
        self.storage.toggle_favorite("u1", self.github.id, True)
        self.storage.record_access("u1", self.github.id)
        self.storage.delete_category("u1", self.category.id)
        self.assertEqual(self.storage.get_apps("u1", self.category.id), [])
        self.assertFalse(self.storage.is_favorite("u1", self.github.id))
        self.assertEqual(self.storage.get_recent_apps("u1"), [])

    def test_toggle_favorite_is_idempotent(self):
        self.storage.toggle_favorite("u1", self.github.id, True)
        self.storage.toggle_favorite("u1", self.github.id, True)
        self.assertTrue(self.storage.is_favorite("u1", self.github.id))
        self.assertEqual(len(self.storage.get_favorites("u1")), 1)

        self.storage.toggle_favorite("u1", self.github.id, False)
        self.storage.toggle_favorite("u1", self.github.id, False)
        self.assertFalse(self.storage.is_favorite("u1", self.github.id))

    def test_favorite_unknown_app_raises(self):
        with self.assertRaises(NotFoundError):
            self.storage.toggle_favorite("u1", "missing", True)

    def test_favorites_newest_first(self):
        self.storage.toggle_favorite("u1", self.github.id, True)
        self.storage.toggle_favorite("u1", self.docs.id, True)
        names = [app.name for app in self.storage.get_favorites("u1")]
        self.assertEqual(names, ["Docs", "GitHub"])

    def test_recent_apps_deduplicated_and_limited(self):
        for app_id in (self.github.id, self.docs.id, self.github.id, self.github.id):
            self.storage.record_access("u1", app_id)
        recent = self.storage.get_recent_apps("u1")
        self.assertEqual([app.id for app in recent], [self.github.id, self.docs.id])
        self.assertEqual(len(self.storage.get_recent_apps("u1", limit=1)), 1)
        self.assertEqual(len(self.storage.get_access_history("u1")), 4)

    def test_recent_apps_zero_limit(self):
        self.storage.record_access("u1", self.github.id)
        self.assertEqual(self.storage.get_recent_apps("u1", limit=0), [])
        self.assertEqual(self.storage.get_recent_apps("u1", limit=-1), [])


    def test_search_matches_name_and_description(self):
        self.assertEqual(
            [a.name for a in self.storage.search_apps("u1", "git")], ["GitHub"]
        )
        self.assertEqual(
            [a.name for a in self.storage.search_apps("u1", "WIKI")], ["Docs"]
        )
        self.assertEqual(self.storage.search_apps("u2", "git"), [])

    def test_config_created_on_first_read(self):
        self.assertEqual(self.storage.get_app_config(), {"showRegisterTab": True})
        self.assertEqual(self.storage.config_writes, 1)
        self.storage.get_app_config()
        self.assertEqual(self.storage.config_writes, 1)

        merged = self.storage.update_app_config({"showRegisterTab": False})
        self.assertEqual(merged, {"showRegisterTab": False})
        self.assertEqual(self.storage.get_app_config(), {"showRegisterTab": False})

    def test_config_default_can_be_overridden(self):
        storage = InMemoryStorage({"showRegisterTab": False})
        self.assertEqual(storage.get_app_config(), {"showRegisterTab": False})

    def test_user_lifecycle(self):
        self.assertFalse(self.storage.has_users())
        user = self.storage.create_user("ana", "ana@example.com")
        self.assertEqual(user.role, UserRole.USER)
        self.assertTrue(self.storage.has_users())

        promoted = self.storage.update_user_role(user.id, UserRole.ADMIN)
        self.assertEqual(promoted.role, UserRole.ADMIN)
        disabled = self.storage.toggle_user_status(user.id, True)
        self.assertTrue(disabled.disabled)

        self.storage.create_category(user.id, "Mine")
        self.storage.delete_user(user.id)
        self.assertIsNone(self.storage.get_user_by_id(user.id))
        self.assertEqual(self.storage.get_categories(user.id), [])

        with self.assertRaises(NotFoundError):
            self.storage.update_user_role(user.id, UserRole.USER)

    def test_returned_objects_are_copies(self):
        category = self.storage.get_category_by_id("u1", self.category.id)
        category.apps.clear()
        self.assertEqual(len(self.storage.get_apps("u1", self.category.id)), 2)


if __name__ == "__main__":
    unittest.main()
