"""Profile store backing the password generator host.

Profiles are persisted as structured rows; everything else (last used
profile, password storage mode, remembered master passwords, per-domain
bindings) lives in a sync-style key/value table. Readers always supply
defaults, so a store where only some keys have arrived is still usable.

Listeners registered with :meth:`ProfileStore.subscribe` receive a mapping
of changed keys to :class:`StorageChange` after each committed write.
"""
from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from .models import ProfileRecord, SessionLocal, SettingRecord
from .schemas import DomainSettings, PasswordStorage, Profile, ProfileCreate, ProfileUpdate

logger = logging.getLogger("sitepass.store")

PASSWORD_STORAGE_MODES: tuple[PasswordStorage, ...] = ("none", "memory", "permanent")
DEFAULT_PASSWORD_STORAGE = os.getenv("SITEPASS_DEFAULT_PASSWORD_STORAGE", "memory").strip().lower()
DEFAULT_PROFILE_NAME = "Default"

LAST_USED_KEY = "profile-last-used"
PASSWORD_STORAGE_KEY = "password-storage"


def profile_key(profile_id: int) -> str:
    return f"profile-{profile_id}"


def password_key(profile_id: int) -> str:
    return f"password-{profile_id}"


def domain_profile_key(domain: str) -> str:
    return f"domain-profile-{domain}"


def domain_substitute_key(domain: str) -> str:
    return f"domain-substitute-{domain}"


class ProfileNotFound(LookupError):
    """Raised when a profile id is not present in the store."""

    def __init__(self, profile_id: int) -> None:
        super().__init__(f"配置不存在: {profile_id}")
        self.profile_id = profile_id


class DuplicateProfileName(ValueError):
    """Raised when a profile name is already taken."""

    def __init__(self, name: str) -> None:
        super().__init__(f"配置名称已存在: {name}")
        self.name = name


@dataclass(frozen=True)
class StorageChange:
    old_value: Any = None
    new_value: Any = None


Listener = Callable[[dict[str, StorageChange]], None]


class ProfileStore:
    def __init__(self, session_factory: sessionmaker[Session] = SessionLocal) -> None:
        self._session_factory = session_factory
        self._lock = threading.RLock()
        self._listeners: list[Listener] = []
        self._passwords: dict[int, str] = {}

    # -- observers ---------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` and return a callable that removes it."""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, changes: dict[str, StorageChange]) -> None:
        if not changes:
            return
        for listener in list(self._listeners):
            try:
                listener(changes)
            except Exception:
                logger.exception("storage listener %r failed", listener)

    # -- key/value settings ------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        with self._session_factory() as session:
            record = session.get(SettingRecord, key)
            if record is None or record.value is None:
                return default
            return record.value

    def get_many(self, defaults: dict[str, Any]) -> dict[str, Any]:
        """Fetch several keys at once, falling back to ``defaults`` per key."""

        if not defaults:
            return {}
        with self._session_factory() as session:
            records = session.scalars(
                select(SettingRecord).where(SettingRecord.key.in_(list(defaults)))
            ).all()
            found = {record.key: record.value for record in records if record.value is not None}
        return {key: found.get(key, default) for key, default in defaults.items()}

    def set(self, key: str, value: Any) -> None:
        self.set_many({key: value})

    def set_many(self, items: dict[str, Any]) -> None:
        changes: dict[str, StorageChange] = {}
        with self._lock:
            with self._session_factory() as session:
                for key, value in items.items():
                    record = session.get(SettingRecord, key)
                    old_value = record.value if record is not None else None
                    if record is None:
                        session.add(SettingRecord(key=key, value=value))
                    else:
                        record.value = value
                    if old_value != value:
                        changes[key] = StorageChange(old_value, value)
                session.commit()
        self._notify(changes)

    def remove(self, *keys: str) -> None:
        if not keys:
            return
        with self._lock:
            with self._session_factory() as session:
                records = session.scalars(
                    select(SettingRecord).where(SettingRecord.key.in_(keys))
                ).all()
                changes = {record.key: StorageChange(record.value, None) for record in records}
                for record in records:
                    session.delete(record)
                session.commit()
        self._notify(changes)

    # -- profiles ----------------------------------------------------------

    def list_profiles(self) -> list[Profile]:
        with self._session_factory() as session:
            records = session.scalars(select(ProfileRecord).order_by(ProfileRecord.id)).all()
            return [Profile.model_validate(record) for record in records]

    def profile_ids(self) -> list[int]:
        with self._session_factory() as session:
            return list(session.scalars(select(ProfileRecord.id).order_by(ProfileRecord.id)).all())

    def get_profile(self, profile_id: int) -> Profile:
        with self._session_factory() as session:
            record = session.get(ProfileRecord, profile_id)
            if record is None:
                raise ProfileNotFound(profile_id)
            return Profile.model_validate(record)

    def has_profile(self, profile_id: Any) -> bool:
        if not isinstance(profile_id, int):
            return False
        with self._session_factory() as session:
            return session.get(ProfileRecord, profile_id) is not None

    @staticmethod
    def _name_taken(session: Session, name: str, exclude_id: int | None = None) -> bool:
        query = select(ProfileRecord.id).where(ProfileRecord.name == name)
        if exclude_id is not None:
            query = query.where(ProfileRecord.id != exclude_id)
        return session.scalar(query) is not None

    @staticmethod
    def _next_profile_name(session: Session) -> str:
        names = set(session.scalars(select(ProfileRecord.name)).all())
        index = 1
        while f"Profile {index}" in names:
            index += 1
        return f"Profile {index}"

    @staticmethod
    def _commit(session: Session, name: str) -> None:
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise DuplicateProfileName(name) from exc

    def add_profile(self, payload: ProfileCreate | None = None) -> Profile:
        """Create a profile with the next free id and make it the last used one."""

        payload = payload or ProfileCreate()
        with self._lock:
            with self._session_factory() as session:
                last_id = session.scalar(select(func.max(ProfileRecord.id)))
                if last_id is None:
                    profile_id = 1
                    name = payload.name or DEFAULT_PROFILE_NAME
                else:
                    profile_id = last_id + 1
                    name = payload.name or self._next_profile_name(session)
                if self._name_taken(session, name):
                    raise DuplicateProfileName(name)

                record = ProfileRecord(
                    id=profile_id, name=name, **payload.model_dump(exclude={"name"})
                )
                session.add(record)
                self._commit(session, name)
                profile = Profile.model_validate(record)

            logger.info("created profile %s (%s)", profile.id, profile.name)
            self._notify({profile_key(profile.id): StorageChange(None, profile.model_dump())})
            self.update_last_used(profile.id)
        return profile

    def update_profile(self, profile_id: int, payload: ProfileUpdate) -> Profile:
        with self._lock:
            with self._session_factory() as session:
                record = session.get(ProfileRecord, profile_id)
                if record is None:
                    raise ProfileNotFound(profile_id)
                previous = Profile.model_validate(record).model_dump()
                if self._name_taken(session, payload.name, exclude_id=profile_id):
                    raise DuplicateProfileName(payload.name)

                for field, value in payload.model_dump().items():
                    setattr(record, field, value)
                session.add(record)
                self._commit(session, payload.name)
                profile = Profile.model_validate(record)

            logger.info("updated profile %s", profile_id)
            self._notify(
                {profile_key(profile_id): StorageChange(previous, profile.model_dump())}
            )
        return profile

    def delete_profile(self, profile_id: int) -> None:
        """Delete a profile; the store is refilled with a default when emptied."""

        with self._lock:
            with self._session_factory() as session:
                record = session.get(ProfileRecord, profile_id)
                if record is None:
                    raise ProfileNotFound(profile_id)
                previous = Profile.model_validate(record).model_dump()
                session.delete(record)
                session.commit()
                remaining = session.scalar(select(func.count()).select_from(ProfileRecord))

            self._passwords.pop(profile_id, None)
            logger.info("deleted profile %s", profile_id)
            self._notify({profile_key(profile_id): StorageChange(previous, None)})
            self.remove(password_key(profile_id))
            if not remaining:
                self.add_profile()

    def ensure_default_profile(self) -> Profile:
        """Make sure at least one profile exists and return the first one."""

        with self._lock:
            profiles = self.list_profiles()
            if profiles:
                return profiles[0]
            return self.add_profile()

    # -- last used ---------------------------------------------------------

    def last_used(self) -> int:
        ids = self.profile_ids()
        if not ids:
            return self.ensure_default_profile().id
        stored = self.get(LAST_USED_KEY)
        return stored if stored in ids else ids[0]

    def update_last_used(self, profile_id: int) -> None:
        with self._lock:
            if profile_id == self.get(LAST_USED_KEY) or not self.has_profile(profile_id):
                return
            self.set(LAST_USED_KEY, profile_id)

    # -- master passwords --------------------------------------------------

    def password_storage(self) -> str:
        mode = self.get(PASSWORD_STORAGE_KEY, DEFAULT_PASSWORD_STORAGE)
        return mode if mode in PASSWORD_STORAGE_MODES else "memory"

    def set_password_storage(self, mode: str) -> None:
        if mode not in PASSWORD_STORAGE_MODES:
            raise ValueError(f"未知的主密码保存方式: {mode}")
        with self._lock:
            if mode == "none":
                self._passwords.clear()
            self.set(PASSWORD_STORAGE_KEY, mode)
            if mode != "permanent":
                self.remove(*self._password_keys(self.profile_ids()))
        logger.info("password storage set to %s", mode)

    @staticmethod
    def _password_keys(profile_ids: Iterable[int]) -> list[str]:
        return [password_key(profile_id) for profile_id in profile_ids]

    def remember_password(self, profile_id: int, password: str) -> None:
        with self._lock:
            mode = self.password_storage()
            if mode == "none":
                return
            self._passwords[profile_id] = password
            if mode == "permanent":
                self.set(password_key(profile_id), password)

    def recall_password(self, profile_id: int) -> str | None:
        with self._lock:
            mode = self.password_storage()
            if mode == "none":
                return None
            if profile_id in self._passwords:
                return self._passwords[profile_id]
            if mode == "permanent":
                return self.get(password_key(profile_id))
            return None

    # -- domains -----------------------------------------------------------

    def domain_settings(self, domain: str) -> DomainSettings:
        values = self.get_many(
            {domain_profile_key(domain): None, domain_substitute_key(domain): domain}
        )
        profile_id = values[domain_profile_key(domain)]
        if not self.has_profile(profile_id):
            profile_id = self.last_used()
        return DomainSettings(
            domain=domain,
            profile_id=profile_id,
            substitute=values[domain_substitute_key(domain)],
        )

    def update_domain_profile(self, domain: str, profile_id: int) -> None:
        if not self.has_profile(profile_id):
            raise ProfileNotFound(profile_id)
        self.set(domain_profile_key(domain), profile_id)

    def update_domain_substitute(self, domain: str, substitute: str | None) -> None:
        if not substitute or substitute == domain:
            self.remove(domain_substitute_key(domain))
            return
        self.set(domain_substitute_key(domain), substitute)
