from datetime import timedelta
from unittest import TestCase

from app.utils.base import parse_duration
from app.utils.config import Settings
from app.utils.errors import STATUS_BY_KIND, AppError, ErrorKind


class DurationTest(TestCase):
    def test_units(self):
        self.assertEqual(parse_duration("7d"), timedelta(days=7))
        self.assertEqual(parse_duration("12h"), timedelta(hours=12))
        self.assertEqual(parse_duration("30m"), timedelta(minutes=30))
        self.assertEqual(parse_duration("3600s"), timedelta(seconds=3600))
        self.assertEqual(parse_duration("90"), timedelta(seconds=90))
        self.assertEqual(parse_duration(45), timedelta(seconds=45))

    def test_invalid(self):
        for value in ("", "soon", "5y"):
            with self.assertRaises(ValueError):
                parse_duration(value)


class ErrorKindTest(TestCase):
    def test_every_kind_has_a_status(self):
        self.assertEqual(set(STATUS_BY_KIND), set(ErrorKind))

    def test_envelope(self):
        error = AppError(ErrorKind.OTP_MISMATCH, "Invalid OTP. 1 attempts remaining.", remainingAttempts=1)
        self.assertEqual(error.status_code, 400)
        self.assertEqual(
            error.to_dict(),
            {"success": False, "message": "Invalid OTP. 1 attempts remaining.", "code": "OTP_MISMATCH", "remainingAttempts": 1},
        )


class SettingsTest(TestCase):
    def test_mongo_uri_is_assembled(self):
        config = Settings(mongodb_uri=None, mongo_user="app", mongo_password="pw", mongo_host="db", mongo_db="ck")
        self.assertEqual(config.mongo_uri, "mongodb://app:pw@db:27017/ck")

    def test_explicit_uri_wins(self):
        config = Settings(mongodb_uri="mongodb+srv://cluster.example.net/ck")
        self.assertEqual(config.mongo_uri, "mongodb+srv://cluster.example.net/ck")

    def test_node_env_alias(self):
        config = Settings(NODE_ENV="production")
        self.assertTrue(config.is_production)
