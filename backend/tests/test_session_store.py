from datetime import timedelta

import pytest

from sessionkeeper.models.auth import RefreshToken, UserSession
from sessionkeeper.services.device import DeviceInfo
from sessionkeeper.services.session_store import SessionStore
from sessionkeeper.timeutil import utcnow

LAPTOP = DeviceInfo(user_agent="laptop-browser", ip_address="10.0.0.1")
PHONE = DeviceInfo(user_agent="phone-browser", ip_address="10.0.0.2")


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(db):
    return SessionStore(db)


@pytest.fixture
def user(store):
    user = store.create_user("a@x.com", "not-a-real-hash")
    store.commit()
    return user


def test_session_upsert_replaces_row_under_new_id(store, db, user):
    now = utcnow()
    first = store.upsert_session(user.id, LAPTOP, "csrf-one", now + timedelta(hours=1), now)
    first_id = first.id
    store.commit()

    second = store.upsert_session(user.id, LAPTOP, "csrf-two", now + timedelta(hours=1), now)
    store.commit()

    assert second.id != first_id
    assert second.csrf_token == "csrf-two"
    assert store.get_session(first_id) is None
    assert db.query(UserSession).count() == 1


def test_revoked_session_is_reactivated_by_upsert(store, user):
    now = utcnow()
    store.upsert_session(user.id, LAPTOP, "csrf-one", now + timedelta(hours=1), now)
    assert store.revoke_session(user.id, LAPTOP.fingerprint, now) == 1
    store.commit()

    session = store.upsert_session(user.id, LAPTOP, "csrf-two", now + timedelta(hours=1), now)
    store.commit()

    assert session.revoked == 0
    assert session.revoked_at is None


def test_refresh_token_upsert_keeps_row_id(store, db, user):
    now = utcnow()
    first = store.upsert_refresh_token(user.id, LAPTOP, "token-one", now + timedelta(days=7), now)
    first_id = first.id
    store.commit()

    second = store.upsert_refresh_token(user.id, LAPTOP, "token-two", now + timedelta(days=7), now)
    store.commit()

    assert second.id == first_id
    assert store.find_refresh_token("token-one") is None
    assert db.query(RefreshToken).count() == 1


def test_refresh_token_lookup_is_scoped_to_owner(store, user):
    now = utcnow()
    store.upsert_refresh_token(user.id, LAPTOP, "token-one", now + timedelta(days=7), now)
    store.commit()

    assert store.find_refresh_token("token-one", user_id=user.id) is not None
    assert store.find_refresh_token("token-one", user_id="someone-else") is None


def test_rotation_only_succeeds_once(store, user):
    now = utcnow()
    record = store.upsert_refresh_token(user.id, LAPTOP, "token-one", now + timedelta(days=7), now)
    store.commit()

    assert store.rotate_refresh_token(record, "token-one", "token-two", now) is True
    # A second rotation from the same predecessor loses the compare-and-swap
    assert store.rotate_refresh_token(record, "token-one", "token-three", now) is False
    store.commit()

    assert store.find_refresh_token("token-two") is not None
    assert store.find_refresh_token("token-three") is None
    assert store.find_rotated_refresh_token("token-one").id == record.id


def test_revoke_all_for_user_counts_active_rows(store, user):
    now = utcnow()
    for device, token in ((LAPTOP, "token-one"), (PHONE, "token-two")):
        store.upsert_session(user.id, device, "csrf", now + timedelta(hours=1), now)
        store.upsert_refresh_token(user.id, device, token, now + timedelta(days=7), now)
    store.commit()

    assert store.revoke_user_sessions(user.id, now) == 2
    assert store.revoke_user_refresh_tokens(user.id, now) == 2
    store.commit()

    assert store.revoke_user_sessions(user.id, now) == 0
    assert store.revoke_user_refresh_tokens(user.id, now) == 0
    assert store.find_session(user.id, PHONE.fingerprint).revoked == 1


def test_find_user_by_email(store, user):
    assert store.find_user_by_email("a@x.com").id == user.id
    assert store.find_user_by_email("b@x.com") is None
