import inspect

import pytest

from coffeechat import repo
from fakes import FakeGateway, FakeRepo, FakeSession

TENANT = "t1"


def _install(monkeypatch, fake: FakeRepo) -> None:
    for name, fn in inspect.getmembers(repo, inspect.iscoroutinefunction):
        if fn.__module__ == repo.__name__:
            monkeypatch.setattr(repo, name, getattr(fake, name))


@pytest.fixture
def fake_repo(monkeypatch):
    fake = FakeRepo()
    _install(monkeypatch, fake)
    return fake


@pytest.fixture
def configured(fake_repo):
    fake_repo.settings[TENANT] = {
        "tenant_id": TENANT,
        "announcements_channel_id": "ann",
        "pairings_channel_id": "pairs",
        "moderator_role_id": "mods",
        "ping_role_id": "coffee",
        "signup_day_of_week": None,
        "signup_start_hour": None,
        "signup_end_hour": None,
    }
    return fake_repo


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def db():
    return FakeSession()


@pytest.fixture
def session_factory():
    return FakeSession
