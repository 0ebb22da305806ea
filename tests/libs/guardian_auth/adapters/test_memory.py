import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from libs.guardian_auth.adapters.base import Account, Session, User, VerificationToken
from libs.guardian_auth.adapters.memory import InMemoryCredentialStore
from libs.guardian_auth.exceptions import RegistrationError

EXPIRES = datetime(2030, 1, 1, tzinfo=UTC)


def _token(token: str = "123456", purpose: str = "email_verification") -> VerificationToken:
    return VerificationToken(
        identifier="bob@example.com", token=token, kind="otp", purpose=purpose, expires=EXPIRES
    )


@pytest.mark.asyncio()
class TestUsers:
    async def test_lookup_by_email_is_case_insensitive(self, store: InMemoryCredentialStore) -> None:
        user = await store.create_user(User(email="Alice@Example.com"))

        found = await store.get_user_by_email("alice@EXAMPLE.com")

        assert found == user
        assert found is not None
        assert found.email == "Alice@Example.com"
        assert await store.get_user(user.id) == user

    async def test_duplicate_email_is_rejected(self, store: InMemoryCredentialStore) -> None:
        await store.create_user(User(email="alice@example.com"))

        with pytest.raises(RegistrationError, match="already exists"):
            await store.create_user(User(email="ALICE@example.com"))

    async def test_update_returns_new_record(self, store: InMemoryCredentialStore) -> None:
        user = await store.create_user(User(email="alice@example.com"))

        updated = await store.update_user(user.id, {"login_attempts": 2, "role": "admin"})

        assert updated is not None
        assert updated.login_attempts == 2
        assert updated.role == "admin"
        assert user.login_attempts == 0

    async def test_update_missing_user(self, store: InMemoryCredentialStore) -> None:
        assert await store.update_user("missing", {"login_attempts": 1}) is None

    async def test_update_rejects_unknown_fields(self, store: InMemoryCredentialStore) -> None:
        user = await store.create_user(User(email="alice@example.com"))

        with pytest.raises(ValueError, match="Unknown user fields"):
            await store.update_user(user.id, {"id": "other"})

    async def test_compare_and_set(self, store: InMemoryCredentialStore) -> None:
        user = await store.create_user(User(email="alice@example.com"))
        await store.update_user(user.id, {"login_attempts": 1})

        stale = await store.update_user(
            user.id, {"login_attempts": 1}, expected={"login_attempts": 0}
        )
        fresh = await store.update_user(
            user.id, {"login_attempts": 2}, expected={"login_attempts": 1}
        )

        assert stale is None
        assert fresh is not None
        assert fresh.login_attempts == 2

    async def test_email_change_moves_index(self, store: InMemoryCredentialStore) -> None:
        user = await store.create_user(User(email="alice@example.com"))

        await store.update_user(user.id, {"email": "alice@new.example.com"})

        assert await store.get_user_by_email("alice@example.com") is None
        assert await store.get_user_by_email("alice@new.example.com") is not None

    async def test_link_account(self, store: InMemoryCredentialStore) -> None:
        user = await store.create_user(User(email="alice@example.com"))

        await store.link_account(Account(user_id=user.id, provider_account_id=user.id))

        accounts = await store.accounts_for(user.id)
        assert [a.provider for a in accounts] == ["credentials"]


@pytest.mark.asyncio()
class TestVerificationTokens:
    async def test_take_is_single_use(self, store: InMemoryCredentialStore) -> None:
        await store.create_verification_token(_token())

        first = await store.use_verification_token("bob@example.com", "123456")
        second = await store.use_verification_token("bob@example.com", "123456")

        assert first == _token()
        assert second is None

    async def test_purpose_filter(self, store: InMemoryCredentialStore) -> None:
        await store.create_verification_token(_token(purpose="password_reset"))

        wrong = await store.use_verification_token(
            "bob@example.com", "123456", purpose="email_verification"
        )
        right = await store.use_verification_token(
            "bob@example.com", "123456", purpose="password_reset"
        )

        assert wrong is None
        assert right is not None

    async def test_new_token_replaces_earlier_one_for_same_purpose(
        self, store: InMemoryCredentialStore
    ) -> None:
        await store.create_verification_token(_token("111111"))
        await store.create_verification_token(_token("222222", purpose="password_reset"))
        await store.create_verification_token(_token("333333"))

        replaced = await store.use_verification_token("bob@example.com", "111111")
        other_purpose = await store.use_verification_token("bob@example.com", "222222")
        latest = await store.use_verification_token("bob@example.com", "333333")

        assert replaced is None
        assert other_purpose is not None
        assert latest is not None

    async def test_concurrent_take_has_one_winner(self, store: InMemoryCredentialStore) -> None:
        await store.create_verification_token(_token())

        results = await asyncio.gather(
            *(store.use_verification_token("bob@example.com", "123456") for _ in range(10))
        )

        assert sum(result is not None for result in results) == 1


@pytest.mark.asyncio()
class TestSessions:
    async def test_session_roundtrip(self, store: InMemoryCredentialStore) -> None:
        user = await store.create_user(User(email="alice@example.com"))
        session = Session(
            session_token="tok", user_id=user.id, expires=EXPIRES - timedelta(days=1)
        )
        await store.create_session(session)

        assert await store.get_session_and_user("tok") == (session, user)

        await store.delete_session("tok")
        assert await store.get_session_and_user("tok") is None

    async def test_session_for_missing_user(self, store: InMemoryCredentialStore) -> None:
        await store.create_session(Session(session_token="tok", user_id="gone", expires=EXPIRES))

        assert await store.get_session_and_user("tok") is None
