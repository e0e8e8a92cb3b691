import pytest
from argon2 import PasswordHasher

from services.auth.common import (
    AccountLockedError,
    InvalidCredentialsError,
    RequestContext,
    WeakPasswordError,
)
from services.auth.lockout import LockoutTracker
from services.auth.password import (
    CredentialValidator,
    build_password_hasher,
    reference_hash,
    validate_password_strength,
)
from services.auth_service import build_auth_orchestrator
from services.identity_store import SqlUserStore


@pytest.fixture()
def hasher(auth_settings) -> PasswordHasher:
    return build_password_hasher(auth_settings)


@pytest.fixture()
def validator(db_session, counter_store, hasher, events) -> CredentialValidator:
    lockout = LockoutTracker(counter_store, max_attempts=3, window_seconds=900, events=events)
    return CredentialValidator(SqlUserStore(db_session), lockout, hasher, events)


def test_valid_credentials_return_sanitized_user(validator, make_user, hasher, events) -> None:
    make_user("alice@example.com", password_hash=hasher.hash("Sup3rSecret"))

    user = validator.validate("Alice@Example.com ", "Sup3rSecret", RequestContext(ip="10.0.0.1", correlation_id="c-1"))

    assert user.email == "alice@example.com"
    assert user.password_hash is None
    name, metadata = events.events[-1]
    assert name == "login_success"
    assert metadata["email"] == "al***@example.com"
    assert metadata["correlation_id"] == "c-1"
    assert "duration_ms" in metadata


def test_wrong_password_and_unknown_user_share_one_error(validator, make_user, hasher) -> None:
    make_user("bob@example.com", password_hash=hasher.hash("Sup3rSecret"))

    with pytest.raises(InvalidCredentialsError) as wrong_password:
        validator.validate("bob@example.com", "nope")
    with pytest.raises(InvalidCredentialsError) as unknown_user:
        validator.validate("nobody@example.com", "nope")

    assert wrong_password.value.message == unknown_user.value.message == "Invalid email or password"
    assert wrong_password.value.code == unknown_user.value.code == "auth.invalid_credentials"
    assert wrong_password.value.status_code == 401


def test_failures_lock_account_even_for_correct_password(validator, make_user, hasher, events) -> None:
    make_user("carol@example.com", password_hash=hasher.hash("Sup3rSecret"))

    for _ in range(3):
        with pytest.raises(InvalidCredentialsError):
            validator.validate("carol@example.com", "wrong-password")

    with pytest.raises(AccountLockedError) as excinfo:
        validator.validate("carol@example.com", "Sup3rSecret")

    assert excinfo.value.status_code == 423
    assert "account_locked" in events.names()
    assert events.events[-1][1]["reason"] == "account_locked"


def test_success_resets_failure_counter(validator, make_user, hasher, redis_client) -> None:
    make_user("dave@example.com", password_hash=hasher.hash("Sup3rSecret"))
    with pytest.raises(InvalidCredentialsError):
        validator.validate("dave@example.com", "wrong-password")

    validator.validate("dave@example.com", "Sup3rSecret")

    assert redis_client.exists("login_attempts:dave@example.com") == 0


def test_sso_user_adopts_first_password(validator, make_user, db_session) -> None:
    created = make_user("erin@example.com", password_hash=None)

    user = validator.validate("erin@example.com", "anything")

    assert user.id == created.id
    stored = SqlUserStore(db_session).get(created.id)
    assert stored.password_hash and stored.password_hash.startswith("$argon2")
    with pytest.raises(InvalidCredentialsError):
        validator.validate("erin@example.com", "something-else")


def test_demo_mode_provisions_unknown_user(db_session, counter_store, hasher, events) -> None:
    validator = CredentialValidator(
        SqlUserStore(db_session),
        LockoutTracker(counter_store),
        hasher,
        events,
        demo_mode=True,
    )

    user = validator.validate("newbie@example.com", "Str0ngPass")

    assert user.email == "newbie@example.com"
    assert user.name == "newbie"
    assert events.names()[:2] == ["user_created", "login_success"]
    with pytest.raises(WeakPasswordError):
        validator.validate("weak@example.com", "weak")


def test_unexpected_store_errors_surface_as_invalid_credentials(counter_store, hasher, events) -> None:
    class _ExplodingStore:
        def find_by_email(self, email):
            raise RuntimeError("database unavailable")

    validator = CredentialValidator(_ExplodingStore(), LockoutTracker(counter_store), hasher, events)

    with pytest.raises(InvalidCredentialsError):
        validator.validate("frank@example.com", "Sup3rSecret")


def test_outdated_hash_is_upgraded(validator, make_user, db_session, hasher) -> None:
    legacy = PasswordHasher(time_cost=2, memory_cost=8, parallelism=1)
    created = make_user("gina@example.com", password_hash=legacy.hash("Sup3rSecret"))

    validator.validate("gina@example.com", "Sup3rSecret")

    stored = SqlUserStore(db_session).get(created.id)
    assert hasher.check_needs_rehash(stored.password_hash) is False


@pytest.mark.parametrize("password", ["short1A", "alllowercase1", "ALLUPPERCASE1", "NoDigitsHere"])
def test_password_strength_rules(password: str) -> None:
    with pytest.raises(WeakPasswordError):
        validate_password_strength(password)


def test_password_strength_accepts_strong_password() -> None:
    validate_password_strength("Abcdefg1")


def test_reference_hash_is_shared_per_parameter_set(auth_settings) -> None:
    first = reference_hash(build_password_hasher(auth_settings))

    assert reference_hash(build_password_hasher(auth_settings)) is first
    assert reference_hash(PasswordHasher(time_cost=2, memory_cost=16, parallelism=1)) != first


def test_unknown_email_and_wrong_password_do_the_same_argon2_work(
    db_session, auth_settings, counter_store, events, make_user, hasher
) -> None:
    make_user("bob@example.com", password_hash=hasher.hash("Sup3rSecret"))
    calls = {"hash": 0, "verify": 0}
    original_hash = PasswordHasher.hash
    original_verify = PasswordHasher.verify

    def counting_hash(self, *args, **kwargs):
        calls["hash"] += 1
        return original_hash(self, *args, **kwargs)

    def counting_verify(self, *args, **kwargs):
        calls["verify"] += 1
        return original_verify(self, *args, **kwargs)

    def attempt(email: str):
        # A fresh orchestrator per login, as each request gets its own session wiring.
        orchestrator = build_auth_orchestrator(db_session, auth_settings, counter_store=counter_store, events=events)
        calls.update(hash=0, verify=0)
        with pytest.MonkeyPatch.context() as patch:
            patch.setattr(PasswordHasher, "hash", counting_hash)
            patch.setattr(PasswordHasher, "verify", counting_verify)
            with pytest.raises(InvalidCredentialsError):
                orchestrator.validate_credentials(email, "Wr0ngPassword")
        return dict(calls)

    unknown = attempt("nobody@example.com")
    wrong_password = attempt("bob@example.com")
    another_unknown = attempt("ghost@example.com")

    assert unknown == wrong_password == another_unknown == {"hash": 0, "verify": 1}
