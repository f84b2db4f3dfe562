"""
Bridge preferences shared with the tor controller.

bridges_list holds newline-terminated bridge lines (or the "moat" marker while
a request is in progress); bridges_enabled tells the controller to use them.
"""
from typing import Optional

from redis import Redis

from app.moat.models import MOAT_BRIDGE, BridgeSet
from app.observability.logging import log
from app.settings import settings
from app.store.redis_conn import get_redis

BRIDGES_LIST = "bridges_list"
BRIDGES_ENABLED = "bridges_enabled"


class PreferenceStore:
    def __init__(self, redis: Optional[Redis] = None, prefix: Optional[str] = None):
        self._redis = redis
        self.prefix = settings.PREFS_KEY_PREFIX if prefix is None else prefix

    def _r(self) -> Redis:
        return self._redis or get_redis()

    def _key(self, name: str) -> str:
        return f"{self.prefix}{name}"

    def set_bridges_list(self, value: str) -> None:
        self._r().set(self._key(BRIDGES_LIST), value)

    def get_bridges_list(self) -> str:
        return self._r().get(self._key(BRIDGES_LIST)) or ""

    def set_bridges_enabled(self, enabled: bool) -> None:
        self._r().set(self._key(BRIDGES_ENABLED), "true" if enabled else "false")

    def bridges_enabled(self) -> bool:
        return (self._r().get(self._key(BRIDGES_ENABLED)) or "").lower() == "true"

    def use_moat_bridge(self) -> None:
        self.set_bridges_list(MOAT_BRIDGE)
        self.set_bridges_enabled(True)

    def save_bridge_set(self, bridges: BridgeSet) -> None:
        self.set_bridges_list(bridges.to_storage())
        self.set_bridges_enabled(True)
        log(event="prefs_bridges_saved", count=len(bridges))
