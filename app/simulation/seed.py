from __future__ import annotations

import logging
import random
from datetime import timedelta

from app.connections.mongo import init_mongo, close_mongo
from app.models.base import utcnow
from app.models.anonymous_request import AnonymousRequest
from app.models.otp import OTP, OTPRequest
from app.models.review import Review, ReviewCriteria, ReviewType
from app.models.task import Budget, RequiredSkill, Task
from app.models.skill import QuizOption, QuizQuestion, SkillDefinition
from app.models.user import College, SkillCategory, SkillLevel, User
from app.services.otp import college_name, load_college_domains
from app.utils.logging import configure_logging


logger = logging.getLogger(__name__)


def _choice(question: str, correct: str, wrong: list[str], difficulty: str = SkillLevel.BEGINNER.value) -> QuizQuestion:
    options = [QuizOption(text=correct, is_correct=True)] + [QuizOption(text=w) for w in wrong]
    random.shuffle(options)
    return QuizQuestion(question=question, options=options, difficulty=difficulty)


def _ensure_skill_catalog() -> list[SkillDefinition]:
    fixtures = [
        ("Python", SkillCategory.DEVELOPMENT.value, "General purpose programming", [
            _choice("Which keyword defines a function?", "def", ["func", "lambda", "fn"]),
            _choice("What does len([1, 2, 3]) return?", "3", ["2", "4", "None"]),
            _choice("Which type is immutable?", "tuple", ["list", "dict", "set"], SkillLevel.INTERMEDIATE.value),
            _choice("What does a generator function use to produce values?", "yield", ["return", "emit", "send"],
                    SkillLevel.INTERMEDIATE.value),
            _choice("Which module provides dataclass?", "dataclasses", ["typing", "collections", "abc"],
                    SkillLevel.ADVANCED.value),
            QuizQuestion(question="Name the statement used to handle exceptions.", question_type="short_answer",
                         correct_answer="try", difficulty=SkillLevel.BEGINNER.value),
        ]),
        ("Figma", SkillCategory.DESIGN.value, "Interface and poster design", [
            _choice("Which feature keeps a reusable design element in sync?", "Components", ["Frames", "Pages", "Layers"]),
            _choice("Auto layout is mainly used for?", "Responsive spacing", ["Exporting", "Comments", "Version history"]),
            QuizQuestion(question="Figma files can be edited by several people at once.", question_type="true_false",
                         options=[QuizOption(text="True", is_correct=True), QuizOption(text="False")]),
        ]),
    ]
    catalog: list[SkillDefinition] = []
    for name, category, description, quiz in fixtures:
        definition = SkillDefinition.objects(name=name).first()
        if not definition:
            definition = SkillDefinition(name=name, category=category, description=description, quiz=quiz)
            definition.save()
        catalog.append(definition)
    return catalog


def _ensure_users() -> list[User]:
    users: list[User] = []
    fixtures = [
        ("Aarav Sharma", "aarav.sharma@vce.ac.in", "3rd Year", "Computer Science"),
        ("Diya Patel", "diya.patel@iitb.ac.in", "2nd Year", "Design"),
        ("Kabir Rao", "kabir.rao@vce.ac.in", "4th Year", "Electronics"),
        ("Meera Iyer", "meera.iyer@bits-pilani.ac.in", "1st Year", "Economics"),
    ]
    for name, email, year, course in fixtures:
        user = User.objects(email=email).first()
        if not user:
            domain = email.split("@")[1]
            user = User(
                name=name,
                email=email,
                year=year,
                course=course,
                college=College(name=college_name(domain), domain=domain),
                is_verified=True,
            )
            user.save()
        users.append(user)
    return users


def _ensure_tasks(users: list[User]) -> list[Task]:
    fixtures = [
        ("Design a poster for the tech fest", SkillCategory.DESIGN.value, ["Figma", "Illustrator"], 800),
        ("Build a landing page for our club", SkillCategory.DEVELOPMENT.value, ["React", "CSS"], 2500),
        ("Proofread my internship report", SkillCategory.WRITING.value, ["Editing"], 300),
        ("Teach me data structures this weekend", SkillCategory.TUTORING.value, ["Algorithms"], 1200),
        ("Edit a two-minute college event video", SkillCategory.VIDEO_EDITING.value, ["Premiere Pro"], 1500),
    ]
    tasks: list[Task] = []
    now = utcnow()
    for idx, (title, category, skills, amount) in enumerate(fixtures):
        poster = users[idx % len(users)]
        task = Task.objects(title=title).first()
        if not task:
            task = Task(
                title=title,
                description=f"{title}. Details will be shared over chat once the bid is accepted.",
                category=category,
                skills_required=[RequiredSkill(name=s) for s in skills],
                budget=Budget(amount=amount),
                deadline=now + timedelta(days=idx + 1, hours=6),
                estimated_hours=random.randint(2, 12),
                posted_by=poster,
            )
            task.save()
            poster.tasks_posted += 1
            poster.save()

            bidders = [u for u in users if u.id != poster.id]
            for bidder in random.sample(bidders, k=2):
                task.add_bid(
                    bidder,
                    amount=round(amount * random.uniform(0.8, 1.1)),
                    message="Happy to take this on.",
                    delivery_time=random.randint(12, 72),
                )
        tasks.append(task)
    return tasks


def _complete_with_review(task: Task) -> None:
    """Drive one task through the whole lifecycle and leave a client review."""
    bid = task.active_bids[0]
    worker: User = bid.bidder
    task.accept_bid(bid.id)
    task.start_work(worker)
    task.submit_work([{"filename": "final.zip", "url": "https://files.example.com/final.zip"}], worker)
    task.complete_task(5, "Great work, delivered early.")

    worker.tasks_completed += 1
    worker.total_earnings += task.escrow.amount
    worker.save()

    Review(
        task=task,
        reviewer=task.posted_by,
        reviewed_user=worker,
        rating=5,
        comment="Delivered on time and communicated clearly throughout.",
        review_type=ReviewType.CLIENT_TO_WORKER.value,
        criteria=ReviewCriteria(communication=5, quality=5, timeliness=4, professionalism=5),
    ).save()

    summary = Review.average_rating_for_user(worker.id)
    worker.average_rating = summary["average_rating"]
    worker.review_count = summary["total_reviews"]
    worker.update_karma_score(2, "5-star review")


def seed() -> None:
    configure_logging()
    load_college_domains()
    init_mongo()
    try:
        # Purge existing data in an order that respects references
        Review.drop_collection()
        Task.drop_collection()
        OTP.drop_collection()
        OTPRequest.drop_collection()
        AnonymousRequest.drop_collection()
        SkillDefinition.drop_collection()
        User.drop_collection()

        catalog = _ensure_skill_catalog()
        users = _ensure_users()
        tasks = _ensure_tasks(users)
        _complete_with_review(tasks[0])
        logger.info("Seed completed: %d skills, %d users, %d tasks", len(catalog), len(users), len(tasks))
    finally:
        close_mongo()


if __name__ == "__main__":
    seed()
