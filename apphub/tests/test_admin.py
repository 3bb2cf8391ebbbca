import unittest

from apphub.admin import ensure_admin
from apphub.storage import InMemoryStorage, NotFoundError
from apphub.types import UserRole


class EnsureAdminTests(unittest.TestCase):
    def setUp(self):
        self.storage = InMemoryStorage()

    def test_promotes_existing_user_by_email(self):
        user = self.storage.create_user("ana", "Ana@Example.com")
        admin = ensure_admin(self.storage, email="ana@example.com")
        self.assertEqual(admin.id, user.id)
        self.assertEqual(self.storage.get_user_by_id(user.id).role, UserRole.ADMIN)

    def test_promotes_by_id(self):
        user = self.storage.create_user("ana", "ana@example.com")
        self.assertEqual(ensure_admin(self.storage, user_id=user.id).role, UserRole.ADMIN)

    def test_creates_when_requested(self):
        admin = ensure_admin(self.storage, email="root@example.com", create=True)
        self.assertEqual(admin.username, "root")
        self.assertEqual(admin.role, UserRole.ADMIN)
        self.assertTrue(self.storage.has_users())

    def test_missing_user_without_create(self):
        with self.assertRaises(NotFoundError):
            ensure_admin(self.storage, email="ghost@example.com")
        with self.assertRaises(ValueError):
            ensure_admin(self.storage)


if __name__ == "__main__":
    unittest.main()
