import json
import tempfile
from datetime import timedelta
from pathlib import Path
from unittest import TestCase, mock

from jose import jwt

from app.models.base import utcnow
from app.models.otp import OTP, OTPRequest
from app.models.user import User
from app.services import otp as otp_service
from app.services.email import EmailDeliveryError
from app.services.otp.domains import load_college_domains
from app.utils.config import settings
from app.utils.errors import AppError, ErrorKind


EMAIL = "student@vce.ac.in"
CODE = "123456"


def send(email=EMAIL, code=CODE):
    with mock.patch("app.services.otp.generate_otp", return_value=code):
        return otp_service.send_otp(email, "127.0.0.1", "pytest")


class CollegeEmailValidationTest(TestCase):
    def test_known_domain_is_valid_with_institution(self):
        result = otp_service.validate_college_email("a@vce.ac.in")
        self.assertTrue(result.is_valid)
        self.assertEqual(result.domain, "vce.ac.in")
        self.assertEqual(result.institution, "Vasavi College of Engineering")

    def test_public_mail_provider_is_rejected(self):
        result = otp_service.validate_college_email("a@gmail.com")
        self.assertFalse(result.is_valid)
        self.assertIn("college email", result.reason)

    def test_subdomain_of_allowed_suffix_is_valid(self):
        result = otp_service.validate_college_email("a@cse.iitb.ac.in")
        self.assertTrue(result.is_valid)

    def test_unmapped_domain_uses_last_two_labels(self):
        result = otp_service.validate_college_email("a@xyz.edu")
        self.assertTrue(result.is_valid)
        self.assertEqual(result.institution, "XYZ.EDU")

    def test_domain_is_case_insensitive(self):
        self.assertTrue(otp_service.validate_college_email("A@VCE.AC.IN").is_valid)

    def test_malformed_email(self):
        for email in ("", "no-at-sign", "@vce.ac.in", "a@"):
            result = otp_service.validate_college_email(email)
            self.assertFalse(result.is_valid)
            self.assertEqual(result.reason, "Invalid email format")

    def test_missing_domains_file_fails_closed(self):
        load_college_domains("/nonexistent/college_domains.json")
        self.assertFalse(otp_service.validate_college_email("a@vce.ac.in").is_valid)
        self.assertEqual(otp_service.supported_domains(), [])

    def test_custom_domains_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "domains.json"
            path.write_text(json.dumps({"allowedDomains": ["uni.example"], "institutionMapping": {"uni.example": "Uni"}}))
            load_college_domains(path)
        self.assertEqual(otp_service.college_name("uni.example"), "Uni")
        self.assertTrue(otp_service.is_supported_domain("a@uni.example"))
        self.assertFalse(otp_service.is_supported_domain("a@vce.ac.in"))


class SendOTPTest(TestCase):
    def test_send_stores_hash_and_never_returns_code(self):
        result = send()
        self.assertNotIn("otp", result)
        self.assertEqual(result["institution"], "Vasavi College of Engineering")
        self.assertEqual(result["expires_in"], 600)

        record = OTP.objects(email=EMAIL).first()
        self.assertIsNotNone(record)
        self.assertNotEqual(record.code_hash, CODE)
        self.assertTrue(record.matches(CODE))
        self.assertNotIn("code_hash", record.to_output())

    def test_new_code_replaces_previous(self):
        send(code="111111")
        send(code="222222")
        self.assertEqual(OTP.objects(email=EMAIL).count(), 1)
        self.assertTrue(OTP.objects(email=EMAIL).first().matches("222222"))

    def test_unsupported_domain_raises_with_supported_list(self):
        with self.assertRaises(AppError) as ctx:
            send(email="a@gmail.com")
        self.assertEqual(ctx.exception.kind, ErrorKind.UNSUPPORTED_DOMAIN)
        self.assertIn("supportedDomains", ctx.exception.details)
        self.assertEqual(OTPRequest.objects.count(), 0)

    def test_fourth_send_within_hour_is_rate_limited(self):
        for _ in range(3):
            send()
        with self.assertRaises(AppError) as ctx:
            send()
        self.assertEqual(ctx.exception.kind, ErrorKind.RATE_LIMITED)
        self.assertEqual(ctx.exception.status_code, 429)
        self.assertEqual(OTPRequest.objects(email=EMAIL).count(), 3)

    def test_rate_limit_is_per_email(self):
        for _ in range(3):
            send()
        send(email="other@vce.ac.in")

    def test_requests_outside_window_do_not_count(self):
        for _ in range(3):
            OTPRequest(email=EMAIL, created_at=utcnow() - timedelta(hours=2)).save()
        send()

    def test_email_failure_does_not_fail_send(self):
        with mock.patch("app.services.email.send_email", side_effect=EmailDeliveryError("smtp down")):
            result = send()
        self.assertIn("message", result)
        self.assertEqual(OTP.objects(email=EMAIL).count(), 1)


class VerifyOTPTest(TestCase):
    def test_correct_code_issues_token_and_creates_user(self):
        send()
        result = otp_service.verify_otp(EMAIL, CODE)

        claims = jwt.decode(result["token"], settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        self.assertEqual(claims["email"], EMAIL)
        self.assertEqual(claims["institution"], "Vasavi College of Engineering")

        user = User.objects(email=EMAIL).first()
        self.assertEqual(claims["sub"], str(user.id))
        self.assertEqual(user.karma_score, 50)
        self.assertTrue(user.is_verified)
        self.assertIsNotNone(user.last_login)
        self.assertEqual(result["user"]["id"], str(user.id))
        self.assertTrue(OTP.objects(email=EMAIL).first().is_verified)

    def test_replay_fails_as_not_found(self):
        send()
        otp_service.verify_otp(EMAIL, CODE)
        with self.assertRaises(AppError) as ctx:
            otp_service.verify_otp(EMAIL, CODE)
        self.assertEqual(ctx.exception.kind, ErrorKind.OTP_NOT_FOUND)
        self.assertIn("not found or already used", ctx.exception.message)

    def test_second_login_reuses_user(self):
        send()
        first = otp_service.verify_otp(EMAIL, CODE)
        send()
        second = otp_service.verify_otp(EMAIL, CODE)
        self.assertEqual(first["user"]["id"], second["user"]["id"])
        self.assertEqual(User.objects.count(), 1)

    def test_mismatch_reports_remaining_attempts(self):
        send()
        with self.assertRaises(AppError) as ctx:
            otp_service.verify_otp(EMAIL, "000000")
        self.assertEqual(ctx.exception.kind, ErrorKind.OTP_MISMATCH)
        self.assertEqual(ctx.exception.details["remainingAttempts"], 2)
        self.assertEqual(OTP.objects(email=EMAIL).first().attempts, 1)

    def test_three_failures_remove_the_record(self):
        send()
        for _ in range(3):
            with self.assertRaises(AppError):
                otp_service.verify_otp(EMAIL, "000000")
        self.assertEqual(OTP.objects(email=EMAIL).count(), 0)

        with self.assertRaises(AppError) as ctx:
            otp_service.verify_otp(EMAIL, CODE)
        self.assertEqual(ctx.exception.kind, ErrorKind.OTP_NOT_FOUND)

    def test_exhausted_record_is_deleted(self):
        send()
        OTP.objects(email=EMAIL).update(set__attempts=3)
        with self.assertRaises(AppError) as ctx:
            otp_service.verify_otp(EMAIL, CODE)
        self.assertEqual(ctx.exception.kind, ErrorKind.OTP_EXHAUSTED)
        self.assertEqual(OTP.objects(email=EMAIL).count(), 0)

    def test_expired_code_is_deleted(self):
        send()
        later = utcnow() + timedelta(minutes=settings.otp_expiry_minutes + 1)
        with mock.patch("app.models.otp.utcnow", return_value=later), self.assertRaises(AppError) as ctx:
            otp_service.verify_otp(EMAIL, CODE)
        self.assertEqual(ctx.exception.kind, ErrorKind.OTP_EXPIRED)
        self.assertEqual(OTP.objects(email=EMAIL).count(), 0)

    def test_deactivated_user_cannot_sign_in(self):
        send()
        otp_service.verify_otp(EMAIL, CODE)
        User.objects(email=EMAIL).update(set__is_active=False)
        send()
        with self.assertRaises(AppError) as ctx:
            otp_service.verify_otp(EMAIL, CODE)
        self.assertEqual(ctx.exception.kind, ErrorKind.FORBIDDEN)
