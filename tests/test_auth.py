import time
from unittest import TestCase

from fastapi.testclient import TestClient
from jose import jwt

from app.services.auth import create_token, refresh_token, revoke_tokens, user_for_token, verify_token
from app.utils.config import settings
from app.utils.errors import AppError, ErrorKind
from main import app
from tests.factories import auth_headers, make_user


class TokenTest(TestCase):
    def setUp(self):
        self.user = make_user()

    def test_claims_shape(self):
        claims = verify_token(create_token(self.user))
        self.assertEqual(claims.sub, str(self.user.id))
        self.assertEqual(claims.email, self.user.email)
        self.assertEqual(claims.domain, "vce.ac.in")
        self.assertTrue(claims.verified)
        self.assertEqual(claims.tv, "1")
        self.assertEqual(claims.exp - claims.iat, 7 * 24 * 3600)

    def test_foreign_signature_is_rejected(self):
        claims = jwt.get_unverified_claims(create_token(self.user))
        forged = jwt.encode(claims, "not-the-secret", algorithm=settings.jwt_algorithm)
        with self.assertRaises(AppError) as ctx:
            verify_token(forged)
        self.assertEqual(ctx.exception.kind, ErrorKind.INVALID_TOKEN)

    def test_expired_token_is_rejected(self):
        now = int(time.time())
        token = jwt.encode(
            {"sub": str(self.user.id), "email": self.user.email, "tv": "1", "typ": "access", "iat": now - 20, "exp": now - 10},
            settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
        )
        with self.assertRaises(AppError) as ctx:
            verify_token(token)
        self.assertEqual(ctx.exception.kind, ErrorKind.INVALID_TOKEN)

    def test_refresh_keeps_claim_shape(self):
        new_token = refresh_token(create_token(self.user))
        claims = verify_token(new_token)
        self.assertEqual(claims.sub, str(self.user.id))
        self.assertEqual(claims.institution, self.user.institution)

    def test_revoke_invalidates_outstanding_tokens(self):
        token = create_token(self.user)
        revoke_tokens(self.user)
        with self.assertRaises(AppError) as ctx:
            user_for_token(token)
        self.assertEqual(ctx.exception.kind, ErrorKind.INVALID_TOKEN)
        self.assertEqual(user_for_token(create_token(self.user)).id, self.user.id)

    def test_inactive_user_is_forbidden(self):
        token = create_token(self.user)
        self.user.is_active = False
        self.user.save()
        with self.assertRaises(AppError) as ctx:
            user_for_token(token)
        self.assertEqual(ctx.exception.kind, ErrorKind.FORBIDDEN)


class AuthRoutesTest(TestCase):
    def setUp(self):
        self.client = TestClient(app)
        self.user = make_user()

    def test_missing_token(self):
        response = self.client.get("/api/v1/auth/verify-token")
        self.assertEqual(response.status_code, 401)
        body = response.json()
        self.assertFalse(body["success"])
        self.assertEqual(body["code"], "INVALID_TOKEN")
        self.assertEqual(body["message"], "No token provided")

    def test_verify_token_and_me(self):
        headers = auth_headers(self.user)
        response = self.client.get("/api/v1/auth/verify-token", headers=headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["user"]["email"], self.user.email)

        response = self.client.get("/api/v1/auth/me", headers=headers)
        self.assertEqual(response.status_code, 200)
        self.assertNotIn("token_version", response.json()["user"])

    def test_refresh_token_route(self):
        response = self.client.post("/api/v1/auth/refresh-token", headers=auth_headers(self.user))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(verify_token(response.json()["token"]).sub, str(self.user.id))

    def test_logout_revokes_token(self):
        headers = auth_headers(self.user)
        response = self.client.post("/api/v1/auth/logout", headers=headers)
        self.assertEqual(response.status_code, 200)

        response = self.client.get("/api/v1/auth/me", headers=headers)
        self.assertEqual(response.status_code, 401)
