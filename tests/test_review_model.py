from unittest import TestCase

from mongoengine import ValidationError

from app.models.review import Review, ReviewCriteria, ReviewStatus, ReviewType, VoteType
from app.utils.errors import AppError, ErrorKind
from tests.factories import completed_task, make_user


def make_review(task, reviewer, reviewed_user, rating=5, **kwargs) -> Review:
    kwargs.setdefault("comment", "Solid work, would hire again.")
    kwargs.setdefault("review_type", ReviewType.CLIENT_TO_WORKER.value)
    review = Review(task=task, reviewer=reviewer, reviewed_user=reviewed_user, rating=rating, **kwargs)
    review.save()
    return review


class ReviewValidationTest(TestCase):
    def setUp(self):
        self.poster = make_user("poster@vce.ac.in")
        self.worker = make_user("worker@vce.ac.in")
        self.task = completed_task(self.poster, self.worker)

    def test_self_review_is_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            make_review(self.task, self.poster, self.poster)
        self.assertIn("Cannot review yourself", str(ctx.exception))

    def test_rating_must_align_with_criteria(self):
        criteria = ReviewCriteria(communication=1, quality=2, timeliness=1, professionalism=2)
        with self.assertRaises(ValidationError) as ctx:
            make_review(self.task, self.poster, self.worker, rating=5, criteria=criteria)
        self.assertIn("align", str(ctx.exception))

    def test_rating_within_one_point_of_criteria(self):
        criteria = ReviewCriteria(communication=4, quality=4, timeliness=3, professionalism=4)
        review = make_review(self.task, self.poster, self.worker, rating=4, criteria=criteria)
        self.assertEqual(review.criteria_average, 3.75)
        self.assertEqual(review.to_output()["criteria_average"], 3.75)

    def test_comment_length(self):
        with self.assertRaises(ValidationError):
            make_review(self.task, self.poster, self.worker, comment="ok")


class ReviewAggregationTest(TestCase):
    def setUp(self):
        self.worker = make_user("worker@vce.ac.in")
        self.clients = [make_user(f"client{i}@vce.ac.in") for i in range(3)]

    def test_no_reviews(self):
        summary = Review.average_rating_for_user(self.worker.id)
        self.assertEqual(summary, {"average_rating": 0, "total_reviews": 0, "rating_distribution": {}})

    def test_average_and_distribution(self):
        for client, rating in zip(self.clients, (5, 4, 4)):
            make_review(completed_task(client, self.worker), client, self.worker, rating=rating)

        summary = Review.average_rating_for_user(self.worker.id)
        self.assertEqual(summary["total_reviews"], 3)
        self.assertEqual(summary["average_rating"], 4.3)
        self.assertEqual(summary["rating_distribution"], {"1": 0, "2": 0, "3": 0, "4": 2, "5": 1})

    def test_criteria_averages(self):
        client = self.clients[0]
        criteria = ReviewCriteria(communication=5, quality=4, timeliness=4, professionalism=5)
        make_review(completed_task(client, self.worker), client, self.worker, rating=5, criteria=criteria)
        averages = Review.criteria_averages_for_user(self.worker.id)
        self.assertEqual(averages, {"communication": 5.0, "quality": 4.0, "timeliness": 4.0, "professionalism": 5.0})

    def test_flagged_reviews_leave_the_average(self):
        client = self.clients[0]
        review = make_review(completed_task(client, self.worker), client, self.worker, rating=1)
        for reporter in [self.worker] + self.clients[1:]:
            review.flag_review("Fake", reporter)
        self.assertEqual(review.status, ReviewStatus.FLAGGED.value)
        self.assertEqual(Review.average_rating_for_user(self.worker.id)["total_reviews"], 0)

    def test_same_reporter_cannot_flag_twice(self):
        client = self.clients[0]
        review = make_review(completed_task(client, self.worker), client, self.worker)
        review.flag_review("Spam", self.clients[1])
        with self.assertRaises(AppError) as ctx:
            review.flag_review("Spam", self.clients[1])
        self.assertEqual(ctx.exception.kind, ErrorKind.CONFLICT)


class HelpfulVoteTest(TestCase):
    def setUp(self):
        self.poster = make_user("poster@vce.ac.in")
        self.worker = make_user("worker@vce.ac.in")
        self.voter = make_user("voter@vce.ac.in")
        self.review = make_review(completed_task(self.poster, self.worker), self.poster, self.worker)

    def test_vote_counts_helpful(self):
        self.review.add_helpful_vote(self.voter, VoteType.HELPFUL.value)
        self.assertEqual(self.review.helpful_votes, 1)

    def test_same_vote_twice_is_rejected(self):
        self.review.add_helpful_vote(self.voter, VoteType.HELPFUL.value)
        with self.assertRaises(AppError) as ctx:
            self.review.add_helpful_vote(self.voter, VoteType.HELPFUL.value)
        self.assertEqual(ctx.exception.kind, ErrorKind.CONFLICT)

    def test_changed_vote_is_updated(self):
        self.review.add_helpful_vote(self.voter, VoteType.HELPFUL.value)
        self.review.add_helpful_vote(self.voter, VoteType.NOT_HELPFUL.value)
        self.assertEqual(self.review.helpful_votes, 0)
        self.assertEqual(len(self.review.voted_by), 1)
