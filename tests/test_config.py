import unittest

from storefront_server.config import Settings


class SettingsTests(unittest.TestCase):
    def test_defaults(self):
        settings = Settings.from_env({})
        self.assertEqual(settings.api_url, "http://localhost:8000/api")
        self.assertTrue(settings.state_file.endswith(".storefront_session.json"))
        self.assertEqual(settings.max_confirm_attempts, 3)
        self.assertIsNone(settings.credentials)

    def test_reads_environment(self):
        settings = Settings.from_env(
            {
                "STOREFRONT_API_URL": "https://shop.example.com/api",
                "STOREFRONT_EMAIL": "ada@example.com",
                "STOREFRONT_PASSWORD": "pw",
                "STOREFRONT_MAX_CONFIRM_ATTEMPTS": "5",
                "STOREFRONT_STRIPE_PUBLISHABLE_KEY": "pk_live_x",
            }
        )
        self.assertEqual(settings.api_url, "https://shop.example.com/api")
        self.assertEqual(settings.max_confirm_attempts, 5)
        self.assertEqual(settings.credentials.email, "ada@example.com")
        self.assertEqual(settings.stripe_publishable_key, "pk_live_x")

    def test_credentials_need_both_values(self):
        self.assertIsNone(Settings.from_env({"STOREFRONT_EMAIL": "ada@example.com"}).credentials)

    def test_invalid_numbers_are_rejected(self):
        with self.assertRaises(ValueError):
            Settings.from_env({"STOREFRONT_MAX_CONFIRM_ATTEMPTS": "many"})
        with self.assertRaises(ValueError):
            Settings.from_env({"STOREFRONT_MAX_CONFIRM_ATTEMPTS": "0"})


if __name__ == "__main__":
    unittest.main()
