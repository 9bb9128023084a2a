"""Watchable key-value stores backed by the database."""

from typing import Callable, Generic, TypeVar

from .db import Database
from .generator import DEFAULT_ORGANIZATION_PROMPT
from .models import OrganizerSettings, PendingOrganizerTemplates

T = TypeVar("T")

SETTINGS_KEY = "organizer_settings"
PENDING_KEY = "pending_organizer_templates"


class WatchableStore(Generic[T]):
    """A typed value under one key, with change notification.

    Watchers are called synchronously after every write from this process.
    Writes are last-write-wins; there is no version check.
    """

    key: str

    def __init__(self, db: Database):
        self.db = db
        self._watchers: list[Callable[[T | None], None]] = []

    def _decode(self, raw) -> T:
        raise NotImplementedError

    def _encode(self, value: T):
        raise NotImplementedError

    def get(self) -> T | None:
        raw = self.db.get_value(self.key)
        return None if raw is None else self._decode(raw)

    def set(self, value: T | None):
        self.db.set_value(self.key, None if value is None else self._encode(value))
        for watcher in list(self._watchers):
            watcher(value)

    def clear(self):
        self.set(None)

    def watch(self, callback: Callable[[T | None], None]) -> Callable[[], None]:
        """Register a watcher. Returns a function that removes it."""
        self._watchers.append(callback)

        def unwatch():
            if callback in self._watchers:
                self._watchers.remove(callback)

        return unwatch


class SettingsStore(WatchableStore[OrganizerSettings]):
    key = SETTINGS_KEY

    def _decode(self, raw) -> OrganizerSettings:
        return OrganizerSettings.from_dict(raw)

    def _encode(self, value: OrganizerSettings):
        return value.to_dict()

    def load(self) -> OrganizerSettings:
        """Stored settings, or the defaults with the default organization prompt."""
        return self.get() or OrganizerSettings(organization_prompt=DEFAULT_ORGANIZATION_PROMPT)


class PendingTemplatesStore(WatchableStore[PendingOrganizerTemplates]):
    key = PENDING_KEY

    def _decode(self, raw) -> PendingOrganizerTemplates:
        return PendingOrganizerTemplates.from_dict(raw)

    def _encode(self, value: PendingOrganizerTemplates):
        return value.to_dict()
