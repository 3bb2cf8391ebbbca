import unittest
from unittest.mock import MagicMock, patch

from apphub import dependencies
from apphub.config import Settings
from apphub.firebase_storage import FirebaseStorage
from apphub.postgres_storage import PostgresStorage
from apphub.storage import InMemoryStorage
from apphub.supabase_storage import SupabaseStorage


class StorageFactoryTests(unittest.TestCase):
    def setUp(self):
        dependencies.reset_storage()
        self.addCleanup(dependencies.reset_storage)

    def test_memory_backend(self):
        settings = Settings(
            _env_file=None, bms_database="memory", default_show_register_tab=False
        )
        storage = dependencies.create_storage(settings)
        self.assertIsInstance(storage, InMemoryStorage)
        self.assertEqual(storage.get_app_config(), {"showRegisterTab": False})

    def test_postgres_backend(self):
        settings = Settings(
            _env_file=None,
            bms_database="postgres",
            database_url="sqlite+pysqlite:///:memory:",
        )
        self.assertIsInstance(dependencies.create_storage(settings), PostgresStorage)

    def test_postgres_requires_url(self):
        settings = Settings(_env_file=None, bms_database="postgres")
        with self.assertRaises(ValueError):
            dependencies.create_storage(settings)

    @patch("apphub.dependencies.create_supabase_client")
    def test_supabase_backend(self, mock_client):
        mock_client.return_value = MagicMock()
        settings = Settings(
            _env_file=None,
            bms_database="supabase",
            supabase_url="https://project.supabase.co",
            supabase_key="service-key",
        )
        self.assertIsInstance(dependencies.create_storage(settings), SupabaseStorage)
        mock_client.assert_called_once_with("https://project.supabase.co", "service-key")

    def test_supabase_requires_credentials(self):
        settings = Settings(_env_file=None, bms_database="supabase")
        with self.assertRaises(ValueError):
            dependencies.create_storage(settings)

    @patch("apphub.dependencies.create_firebase_clients")
    def test_unknown_backend_falls_back_to_firebase(self, mock_clients):
        mock_clients.return_value = MagicMock()
        settings = Settings(_env_file=None, bms_database="mongodb")
        with self.assertLogs("apphub.dependencies", level="WARNING"):
            storage = dependencies.create_storage(settings)
        self.assertIsInstance(storage, FirebaseStorage)

    @patch("apphub.dependencies.create_storage")
    def test_get_storage_is_singleton(self, mock_create):
        mock_create.return_value = InMemoryStorage()
        first = dependencies.get_storage()
        second = dependencies.get_storage()
        self.assertIs(first, second)
        mock_create.assert_called_once()

        dependencies.reset_storage()
        dependencies.get_storage()
        self.assertEqual(mock_create.call_count, 2)


if __name__ == "__main__":
    unittest.main()
