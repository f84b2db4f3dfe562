"""
Commands the moat flow sends to whatever controls tor.

The controller daemon owns the tor process; we only ask it to start tor,
re-read its bridge configuration (SIGHUP equivalent) or re-broadcast status.
Status comes back asynchronously through ProtocolStateMachine.on_status_changed.
"""
from __future__ import annotations

import json
import time
from typing import Optional

from redis import Redis

from app.observability.logging import log
from app.settings import settings
from app.store.redis_conn import get_redis

CMD_START = "start"
CMD_RELOAD = "reload"
CMD_STATUS = "status"


class NetworkControl:
    def start_network(self) -> None:
        raise NotImplementedError

    def reload_configuration(self) -> None:
        raise NotImplementedError

    def poll_status(self) -> None:
        raise NotImplementedError


class RedisNetworkControl(NetworkControl):
    """Pushes {"command": ..., "ts": ...} onto a Redis list for the controller to BRPOP."""

    def __init__(self, redis: Optional[Redis] = None, key: Optional[str] = None):
        self._redis = redis
        self.key = key or settings.NETWORK_COMMAND_KEY

    def _send(self, command: str) -> None:
        r = self._redis or get_redis()
        r.lpush(self.key, json.dumps({"command": command, "ts": int(time.time())}))
        log(event="network_command", command=command, key=self.key)

    def start_network(self) -> None:
        self._send(CMD_START)

    def reload_configuration(self) -> None:
        self._send(CMD_RELOAD)

    def poll_status(self) -> None:
        self._send(CMD_STATUS)
