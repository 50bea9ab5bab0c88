from unittest import TestCase, mock
from urllib.parse import parse_qs, urlparse

from app.connections.redis import get_redis
from app.models.user import User
from app.services import magic_link
from app.services.auth import verify_token
from app.utils.errors import AppError, ErrorKind


EMAIL = "student@iitb.ac.in"


class MagicLinkTest(TestCase):
    def send(self, email=EMAIL) -> str:
        with mock.patch("app.services.magic_link.dispatch_magic_link_email") as dispatch:
            result = magic_link.send_magic_link(email)
        self.assertEqual(result["institution"], "IIT Bombay")
        link = dispatch.call_args.args[1]
        self.assertTrue(link.startswith("http://localhost:3000/auth/verify?token="))
        return parse_qs(urlparse(link).query)["token"][0]

    def test_token_is_stored_with_ttl(self):
        token = self.send()
        self.assertEqual(len(token), 64)
        client = get_redis()
        self.assertEqual(client.get(f"magic:{token}"), EMAIL)
        self.assertGreater(client.ttl(f"magic:{token}"), 0)

    def test_verify_signs_in_once(self):
        token = self.send()
        result = magic_link.verify_magic_link(token)
        self.assertEqual(verify_token(result["token"]).email, EMAIL)
        self.assertEqual(User.objects(email=EMAIL).first().institution, "IIT Bombay")

        with self.assertRaises(AppError) as ctx:
            magic_link.verify_magic_link(token)
        self.assertEqual(ctx.exception.kind, ErrorKind.MAGIC_LINK_INVALID)

    def test_unknown_token(self):
        with self.assertRaises(AppError) as ctx:
            magic_link.verify_magic_link("deadbeef")
        self.assertEqual(ctx.exception.kind, ErrorKind.MAGIC_LINK_INVALID)

    def test_unsupported_domain(self):
        with self.assertRaises(AppError) as ctx:
            magic_link.send_magic_link("someone@yahoo.com")
        self.assertEqual(ctx.exception.kind, ErrorKind.UNSUPPORTED_DOMAIN)

    def test_shares_otp_request_quota(self):
        for _ in range(3):
            self.send()
        with self.assertRaises(AppError) as ctx:
            self.send()
        self.assertEqual(ctx.exception.kind, ErrorKind.RATE_LIMITED)
