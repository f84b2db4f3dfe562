from typing import Optional

from redis import Redis
from app.settings import settings


def get_redis(url: Optional[str] = None) -> Redis:
    return Redis.from_url(url or settings.REDIS_URL, decode_responses=True)
