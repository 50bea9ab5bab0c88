import os

os.environ["OTP_HASH_ROUNDS"] = "4"
os.environ["EMAIL_SERVICE"] = "console"
os.environ["EMAIL_ASYNC"] = "false"
os.environ["SKIP_DB"] = "false"
os.environ["DEBUG"] = "false"
os.environ["JWT_SECRET"] = "test-secret"

from unittest import mock

import fakeredis
import mongomock
import pytest
from mongoengine import connect, disconnect

from app.connections.redis import set_redis
from app.services.otp.domains import reset_college_domains


@pytest.fixture(autouse=True)
def mongo():
    connect(
        db="campuskarma_test",
        host="mongodb://localhost",
        alias="default",
        mongo_client_class=mongomock.MongoClient,
        tz_aware=True,
    )
    yield
    disconnect(alias="default")


@pytest.fixture(autouse=True)
def redis_client():
    client = fakeredis.FakeRedis(decode_responses=True)
    client.flushall()
    set_redis(client)
    yield client
    set_redis(None)


@pytest.fixture(autouse=True)
def scheduled_jobs():
    with mock.patch("app.services.task_jobs.schedule_at") as schedule_at:
        yield schedule_at


@pytest.fixture(autouse=True)
def college_domains():
    reset_college_domains()
    yield
    reset_college_domains()
