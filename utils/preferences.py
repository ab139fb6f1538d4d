from typing import Callable, List, Set

from config import DEFAULT_TARGET_CURRENCY
from models.schemas import UserPreferences
from utils.logger import logger

PreferenceListener = Callable[[Set[str], UserPreferences], None]


def default_preferences() -> UserPreferences:
    return UserPreferences(target_currency=DEFAULT_TARGET_CURRENCY)


class PreferenceStore:
    """In-process preference store with change notifications."""

    def __init__(self, initial: UserPreferences = None):
        self._preferences = initial or default_preferences()
        self._listeners: List[PreferenceListener] = []

    def get_snapshot(self) -> UserPreferences:
        return self._preferences.model_copy()

    def update(self, **changes) -> Set[str]:
        """Apply changes; listeners receive the names of fields that changed."""
        current = self._preferences.model_dump()
        changed = {
            key
            for key, value in changes.items()
            if value is not None and key in current and current[key] != value
        }
        if not changed:
            return changed

        current.update({key: changes[key] for key in changed})
        self._preferences = UserPreferences(**current)
        logger.info("Preferences updated", changed=sorted(changed))

        snapshot = self.get_snapshot()
        for listener in list(self._listeners):
            listener(changed, snapshot)
        return changed

    def subscribe(self, listener: PreferenceListener):
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: PreferenceListener):
        if listener in self._listeners:
            self._listeners.remove(listener)


# Process-wide store used by the HTTP layer
preference_store = PreferenceStore()
