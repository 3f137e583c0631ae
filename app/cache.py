import json

from loguru import logger
from redis.asyncio import Redis

from app.settings import REDIS_URL, TAX_RULES_TTL

_redis: Redis | None = None

# Only tax *rates* are cached. Promo counters and room availability are always
# read from the database.
TAX_RULES_KEY = "tax_rules"


def get_redis() -> Redis:
    global _redis
    if _redis is None:
        _redis = Redis.from_url(REDIS_URL, decode_responses=True)
    return _redis


async def get_tax_rules_cache() -> list | None:
    try:
        data = await get_redis().get(TAX_RULES_KEY)
        return json.loads(data) if data else None
    except Exception:
        logger.opt(exception=True).warning("Redis get failed: skipping tax rules cache")
        return None


async def set_tax_rules_cache(rules: list) -> None:
    try:
        await get_redis().setex(TAX_RULES_KEY, TAX_RULES_TTL, json.dumps(rules))
    except Exception:
        logger.opt(exception=True).warning("Redis set failed: skipping tax rules cache")


async def invalidate_tax_rules_cache() -> None:
    try:
        await get_redis().delete(TAX_RULES_KEY)
    except Exception:
        logger.opt(exception=True).warning("Redis invalidate failed for tax rules cache")
