import unittest
from decimal import Decimal

from mdcars import create_app
from mdcars.config import Config
from mdcars.extensions import db
from mdcars.models import Setting, User
from mdcars.services import settings_service
from mdcars.validation import NotFoundError, ValidationError


class SettingsTestConfig(Config):
    TESTING = True
    SECRET_KEY = "test"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    DEFAULT_EXCHANGE_RATE = "4.85"
    STORE_NAME = "MD CARS Test"
    LOG_LEVEL = "WARNING"


class SettingsServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = create_app(SettingsTestConfig)
        cls.ctx = cls.app.app_context()
        cls.ctx.push()
        db.create_all()

    @classmethod
    def tearDownClass(cls):
        db.session.remove()
        db.drop_all()
        cls.ctx.pop()

    def setUp(self):
        db.session.query(Setting).delete()
        db.session.query(User).delete()
        db.session.commit()

        self.admin = User(
            username="admin",
            password_hash="x",
            role="owner",
            first_name="Store",
            last_name="Owner",
            is_active=True,
        )
        db.session.add(self.admin)
        db.session.commit()

    def test_seed_is_idempotent(self):
        created = settings_service.seed_default_settings()
        db.session.commit()
        self.assertEqual(sorted(created), ["currency_default", "exchange_rate", "store_name"])
        self.assertEqual(settings_service.get_setting("store_name").value, "MD CARS Test")
        self.assertEqual(settings_service.get_setting("exchange_rate").value, "4.8500")

        self.assertEqual(settings_service.seed_default_settings(), [])

    def test_exchange_rate_falls_back_to_config(self):
        self.assertEqual(settings_service.get_exchange_rate(), Decimal("4.8500"))
        self.assertEqual(settings_service.get_default_currency(), "LYD")

    def test_exchange_rate_update_is_normalized(self):
        setting = settings_service.upsert_setting("exchange_rate", "5.123456", actor_user_id=self.admin.id)
        self.assertEqual(setting.value, "5.1235")
        self.assertEqual(setting.updated_by_user_id, self.admin.id)
        self.assertEqual(settings_service.get_exchange_rate(), Decimal("5.1235"))

    def test_non_positive_rate_rejected(self):
        with self.assertRaises(ValidationError):
            settings_service.upsert_setting("exchange_rate", "0", actor_user_id=self.admin.id)
        self.assertEqual(db.session.query(Setting).count(), 0)

    def test_default_currency_must_be_known(self):
        with self.assertRaises(ValidationError):
            settings_service.upsert_setting("currency_default", "EUR", actor_user_id=self.admin.id)
        settings_service.upsert_setting("currency_default", "USD", actor_user_id=self.admin.id)
        self.assertEqual(settings_service.get_default_currency(), "USD")

    def test_custom_key_stored_as_string(self):
        setting = settings_service.upsert_setting(
            "receipt_footer", "Thank you", actor_user_id=self.admin.id, description="Printed last"
        )
        self.assertEqual(setting.value_type, "string")
        self.assertEqual(setting.description, "Printed last")

    def test_unknown_key_not_found(self):
        with self.assertRaises(NotFoundError):
            settings_service.get_setting("nope")


if __name__ == "__main__":
    unittest.main()
