from datetime import timedelta
from unittest import TestCase

from fastapi.testclient import TestClient

from app.models.anonymous_request import AnonymousRequest, AnonymousRequestStatus
from app.models.base import utcnow
from app.services import anonymous as anonymous_service
from app.utils.errors import AppError, ErrorKind
from main import app
from tests.factories import auth_headers, make_user


def make_request(user, **kwargs) -> AnonymousRequest:
    kwargs.setdefault("title", "Stuck on recursion")
    kwargs.setdefault("description", "Need someone to walk me through a recursive tree traversal.")
    kwargs.setdefault("skills_needed", ["Python"])
    kwargs.setdefault("estimated_time", "30min")
    return anonymous_service.create_request(user, **kwargs)


class AnonymousRequestServiceTest(TestCase):
    def setUp(self):
        self.requester = make_user("asker@vce.ac.in")
        self.helper = make_user("helper@vce.ac.in", karma_score=80)

    def test_identity_is_hashed(self):
        request = make_request(self.requester, ip_address="10.0.0.1", tags=[" Trees "])
        self.assertEqual(request.anonymous_user_id, anonymous_service.anonymous_id(self.requester.id))
        self.assertNotEqual(request.anonymous_user_id, str(self.requester.id))
        self.assertEqual(len(request.ip_hash), 64)
        self.assertEqual(request.tags, ["trees"])

        output = request.to_output()
        for private in ("anonymous_user_id", "ip_hash", "user_agent"):
            self.assertNotIn(private, output)

    def test_expires_after_a_day(self):
        request = make_request(self.requester)
        remaining = request.expires_at - utcnow()
        self.assertGreater(remaining, timedelta(hours=23))
        self.assertLessEqual(remaining, timedelta(hours=24))

    def test_feed_orders_by_urgency(self):
        make_request(self.requester, urgency_level="Low", title="Low priority help")
        make_request(self.requester, urgency_level="Critical", title="Exam tomorrow help")
        titles = [r.title for r in anonymous_service.active_feed()]
        self.assertEqual(titles, ["Exam tomorrow help", "Low priority help"])

    def test_offer_and_match(self):
        request = make_request(self.requester)
        offer = anonymous_service.offer_help(request.session_id, self.helper, "I can explain it", is_anonymous=True)
        self.assertEqual(offer.trust_score, 80)
        self.assertNotEqual(offer.helper_id, str(self.helper.id))

        with self.assertRaises(AppError) as ctx:
            anonymous_service.offer_help(request.session_id, self.helper, "Again", is_anonymous=True)
        self.assertEqual(ctx.exception.kind, ErrorKind.CONFLICT)

        anonymous_service.match_helper(request.session_id, str(offer.id), self.requester)
        request.reload()
        self.assertEqual(request.status, AnonymousRequestStatus.MATCHED.value)
        self.assertEqual(request.matched_helper_id, offer.helper_id)
        self.assertEqual(request.response_count, 1)
        self.assertEqual(anonymous_service.active_feed(), [])

    def test_requester_cannot_help_themselves(self):
        request = make_request(self.requester)
        with self.assertRaises(AppError) as ctx:
            anonymous_service.offer_help(request.session_id, self.requester, "Me")
        self.assertEqual(ctx.exception.kind, ErrorKind.FORBIDDEN)

    def test_only_requester_can_match_or_close(self):
        request = make_request(self.requester)
        offer = anonymous_service.offer_help(request.session_id, self.helper, "Sure")
        with self.assertRaises(AppError) as ctx:
            anonymous_service.match_helper(request.session_id, str(offer.id), self.helper)
        self.assertEqual(ctx.exception.kind, ErrorKind.FORBIDDEN)
        with self.assertRaises(AppError) as ctx:
            anonymous_service.update_status(request.session_id, "Cancelled", self.helper)
        self.assertEqual(ctx.exception.kind, ErrorKind.FORBIDDEN)

    def test_close(self):
        request = make_request(self.requester)
        with self.assertRaises(AppError) as ctx:
            anonymous_service.update_status(request.session_id, "Active", self.requester)
        self.assertEqual(ctx.exception.kind, ErrorKind.VALIDATION)

        anonymous_service.update_status(request.session_id, "Cancelled", self.requester)
        with self.assertRaises(AppError) as ctx:
            anonymous_service.update_status(request.session_id, "Completed", self.requester)
        self.assertEqual(ctx.exception.kind, ErrorKind.INVALID_TRANSITION)

        with self.assertRaises(AppError) as ctx:
            anonymous_service.offer_help(request.session_id, self.helper, "Late")
        self.assertEqual(ctx.exception.kind, ErrorKind.INVALID_TRANSITION)

    def test_my_requests(self):
        make_request(self.requester)
        make_request(self.helper)
        self.assertEqual(len(anonymous_service.my_requests(self.requester)), 1)


class AnonymousRoutesTest(TestCase):
    def setUp(self):
        self.client = TestClient(app)
        self.requester = make_user("asker@vce.ac.in")
        self.helper = make_user("helper@vce.ac.in")

    def create(self, **overrides):
        body = {
            "title": "Help with CSS grid",
            "description": "My layout collapses on mobile, need a quick review.",
            "skills_needed": ["CSS"],
            "estimated_time": "15min",
            **overrides,
        }
        return self.client.post("/api/v1/anonymous/request", json=body, headers=auth_headers(self.requester))

    def test_create_and_view(self):
        response = self.create()
        self.assertEqual(response.status_code, 201)
        session_id = response.json()["request"]["session_id"]
        self.assertNotIn("anonymous_user_id", response.json()["request"])

        response = self.client.get(f"/api/v1/anonymous/request/{session_id}")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["request"]["views"], 1)

        feed = self.client.get("/api/v1/anonymous/feed", params={"skills": ["CSS"]}).json()
        self.assertEqual(feed["total"], 1)

    def test_invalid_estimated_time(self):
        self.assertEqual(self.create(estimated_time="a week").status_code, 400)
        self.assertEqual(self.create(skills_needed=[]).status_code, 400)

    def test_help_match_and_complete(self):
        session_id = self.create().json()["request"]["session_id"]

        response = self.client.post(
            f"/api/v1/anonymous/request/{session_id}/help",
            json={"message": "I do this daily"},
            headers=auth_headers(self.helper),
        )
        self.assertEqual(response.status_code, 200)
        offer_id = response.json()["help_offer"]["id"]
        self.assertNotIn("helper_id", response.json()["help_offer"])

        mine = self.client.get("/api/v1/anonymous/my-requests", headers=auth_headers(self.requester)).json()
        self.assertEqual(mine["requests"][0]["help_offers"][0]["helper_id"], str(self.helper.id))

        response = self.client.post(
            f"/api/v1/anonymous/request/{session_id}/match",
            json={"offer_id": offer_id},
            headers=auth_headers(self.requester),
        )
        self.assertEqual(response.json()["matched_helper_id"], str(self.helper.id))

        response = self.client.put(
            f"/api/v1/anonymous/request/{session_id}/status",
            json={"status": "Completed"},
            headers=auth_headers(self.requester),
        )
        self.assertEqual(response.json()["status"], "Completed")

    def test_unknown_request(self):
        self.assertEqual(self.client.get("/api/v1/anonymous/request/missing").status_code, 404)
