# backend/rq_connection.py
from functools import lru_cache

import redis
from rq import Queue

from .config import settings


@lru_cache(maxsize=1)
def get_redis():
    # Connected lazily so the inline backend never needs Redis.
    return redis.from_url(settings.REDIS_URL)


@lru_cache(maxsize=1)
def get_side_effect_queue() -> Queue:
    return Queue(settings.SIDE_EFFECT_QUEUE, connection=get_redis())
