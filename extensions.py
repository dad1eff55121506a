# extensions.py
from flask_sqlalchemy import SQLAlchemy
from redis import Redis

db = SQLAlchemy()


def make_redis(redis_url):
    """Build the Redis connection owned by the payment engine (queue + locks)."""
    if not redis_url:
        raise RuntimeError("Missing REDIS_URL configuration")
    return Redis.from_url(redis_url)
