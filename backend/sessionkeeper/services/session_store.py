"""Persistence for users, sessions and refresh tokens."""
from datetime import datetime
import uuid

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from sessionkeeper.models.auth import RefreshToken, UserSession
from sessionkeeper.models.user import User
from sessionkeeper.services.device import DeviceInfo
from sessionkeeper.services.token_codec import hash_token

_UPSERT_DIALECTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


class SessionStore:
    """CRUD over the users, sessions and refresh_tokens tables.

    Sessions and refresh tokens are upserted on (user_id, device_fingerprint)
    with a single INSERT .. ON CONFLICT statement, so two concurrent sign-ins
    from one device can never leave two rows behind. Nothing is committed
    here; the caller owns the transaction.
    """

    def __init__(self, db: Session):
        self.db = db

    def _insert(self, model):
        dialect = self.db.get_bind().dialect.name
        try:
            insert = _UPSERT_DIALECTS[dialect]
        except KeyError:
            raise NotImplementedError(f"Upsert is not supported for dialect {dialect!r}") from None
        return insert(model)

    def _fetch(self, statement):
        return self.db.execute(
            statement.execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()

    # Users

    def find_user_by_email(self, email: str) -> User | None:
        return self._fetch(select(User).where(User.email == email))

    def get_user(self, user_id: str) -> User | None:
        return self._fetch(select(User).where(User.id == user_id))

    def create_user(self, email: str, password_hash: str) -> User:
        user = User(email=email, password_hash=password_hash)
        self.db.add(user)
        self.db.flush()
        return user

    # Sessions

    def upsert_session(
        self,
        user_id: str,
        device: DeviceInfo,
        csrf_token: str,
        expires_at: datetime,
        now: datetime,
    ) -> UserSession:
        """Create or overwrite the session for (user, device) under a new id."""
        values = {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "device_fingerprint": device.fingerprint,
            "csrf_token": csrf_token,
            "created_at": now.isoformat(),
            "expires_at": expires_at.isoformat(),
            "revoked": 0,
            "revoked_at": None,
            "user_agent": device.user_agent,
            "ip_address": device.ip_address,
        }
        statement = self._insert(UserSession).values(**values)
        statement = statement.on_conflict_do_update(
            index_elements=["user_id", "device_fingerprint"],
            set_={key: value for key, value in values.items() if key not in ("user_id", "device_fingerprint")},
        )
        self.db.execute(statement)
        return self.get_session(values["id"])

    def get_session(self, session_id: str) -> UserSession | None:
        return self._fetch(select(UserSession).where(UserSession.id == session_id))

    def find_session(self, user_id: str, device_fingerprint: str) -> UserSession | None:
        return self._fetch(
            select(UserSession).where(
                UserSession.user_id == user_id,
                UserSession.device_fingerprint == device_fingerprint,
            )
        )

    def revoke_session(self, user_id: str, device_fingerprint: str, now: datetime) -> int:
        result = self.db.execute(
            update(UserSession)
            .where(
                UserSession.user_id == user_id,
                UserSession.device_fingerprint == device_fingerprint,
                UserSession.revoked == 0,
            )
            .values(revoked=1, revoked_at=now.isoformat())
        )
        return result.rowcount

    def revoke_user_sessions(self, user_id: str, now: datetime) -> int:
        result = self.db.execute(
            update(UserSession)
            .where(UserSession.user_id == user_id, UserSession.revoked == 0)
            .values(revoked=1, revoked_at=now.isoformat())
        )
        return result.rowcount

    # Refresh tokens

    def upsert_refresh_token(
        self,
        user_id: str,
        device: DeviceInfo,
        token: str,
        expires_at: datetime,
        now: datetime,
    ) -> RefreshToken:
        """Create or overwrite the refresh token record for (user, device)."""
        values = {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "device_fingerprint": device.fingerprint,
            "token_hash": hash_token(token),
            "created_at": now.isoformat(),
            "expires_at": expires_at.isoformat(),
            "revoked": 0,
            "revoked_at": None,
            "rotated_from_hash": None,
            "rotated_at": None,
            "user_agent": device.user_agent,
            "ip_address": device.ip_address,
        }
        statement = self._insert(RefreshToken).values(**values)
        statement = statement.on_conflict_do_update(
            index_elements=["user_id", "device_fingerprint"],
            # Keep the original row id; everything else is replaced.
            set_={key: value for key, value in values.items() if key not in ("id", "user_id", "device_fingerprint")},
        )
        self.db.execute(statement)
        return self.find_refresh_token(token)

    def find_refresh_token(self, token: str, user_id: str | None = None) -> RefreshToken | None:
        statement = select(RefreshToken).where(RefreshToken.token_hash == hash_token(token))
        if user_id is not None:
            statement = statement.where(RefreshToken.user_id == user_id)
        return self._fetch(statement)

    def find_rotated_refresh_token(self, token: str) -> RefreshToken | None:
        """Return the record whose previous token value was ``token``, if any."""
        return self._fetch(
            select(RefreshToken).where(RefreshToken.rotated_from_hash == hash_token(token))
        )

    def rotate_refresh_token(self, record: RefreshToken, old_token: str, new_token: str, now: datetime) -> bool:
        """Swap the record's token value, only if it still holds ``old_token``.

        Returns False when another request rotated the record first.
        """
        old_hash = hash_token(old_token)
        result = self.db.execute(
            update(RefreshToken)
            .where(
                RefreshToken.id == record.id,
                RefreshToken.token_hash == old_hash,
                RefreshToken.revoked == 0,
            )
            .values(
                token_hash=hash_token(new_token),
                rotated_from_hash=old_hash,
                rotated_at=now.isoformat(),
            )
        )
        return result.rowcount == 1

    def revoke_user_refresh_tokens(self, user_id: str, now: datetime) -> int:
        result = self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.revoked == 0)
            .values(revoked=1, revoked_at=now.isoformat())
        )
        return result.rowcount
