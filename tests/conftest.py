"""Shared fixtures for Guardian Auth tests."""

from __future__ import annotations

import pytest

from libs.guardian_auth.adapters.memory import InMemoryCredentialStore
from tests.libs.guardian_auth.fakes import FakeClock, RecordingEmailSender


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture()
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()
