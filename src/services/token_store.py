'''
Redis-backed expiring key store for download token redemption.

A token id (jti) is marked used with SET NX EX, so redemption is single use
for as long as the token itself is valid, across processes and restarts.
'''
import os
from typing import Optional

import redis

from src.infra.log import get_logger

logger = get_logger('storefront.downloads')


class TokenStore:
    '''Expiring key-value store keyed by download token id.'''

    PREFIX = 'dl:used:'

    def __init__(self, redis_client: Optional[redis.Redis] = None):
        if redis_client is not None:
            self.redis = redis_client
        else:
            redis_url = os.environ.get('REDIS_URL', 'redis://localhost:6379/0')
            self.redis = redis.from_url(redis_url, decode_responses=True)

    def mark_used(self, token_id: str, ttl_seconds: int) -> bool:
        '''
        Record that a token has been redeemed.

        Returns True on first use and False when the token was already
        redeemed. When Redis is unreachable the redemption is allowed: the
        token's user/product binding and expiry are in its signature and
        still hold.
        '''
        key = f"{self.PREFIX}{token_id}"
        try:
            return bool(self.redis.set(key, '1', nx=True, ex=max(int(ttl_seconds), 1)))
        except redis.RedisError as e:
            logger.warning("Token store unavailable, allowing redemption", token_id=token_id, error=str(e))
            return True
