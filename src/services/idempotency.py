'''
Redis-based idempotency service for checkout requests.

A client may send an Idempotency-Key header with POST /api/checkout/intent.
The first response is cached for 24 hours under (user, key) together with a
hash of the request body; a retry with the same key and body replays that
response, and the same key with a different body is rejected with 409.
'''
import json
import os
from datetime import datetime, timezone
from typing import Dict, Any, Optional, Tuple

import redis

from src.infra.log import get_logger

logger = get_logger('storefront.idempotency')

DEFAULT_TTL_HOURS = 24


class IdempotencyService:
    '''Redis-based idempotency service with 24-hour TTL.'''

    def __init__(self, redis_client: Optional[redis.Redis] = None):
        '''Initialize idempotency service with Redis client.'''
        if redis_client is not None:
            self.redis = redis_client
        else:
            redis_url = os.environ.get('REDIS_URL', 'redis://localhost:6379/0')
            self.redis = redis.from_url(redis_url, decode_responses=True)

    @staticmethod
    def generate_idempotency_key(user_id: str, custom_key: str) -> str:
        '''
        Generate the storage key for a client idempotency key.

        Format: idem:{user_id}:{custom_key}
        '''
        return f"idem:{user_id[:64]}:{custom_key[:64]}"

    def store_response(
        self,
        idempotency_key: str,
        body_hash: str,
        response_data: Dict[str, Any],
        status_code: int = 200,
        ttl_hours: int = DEFAULT_TTL_HOURS
    ) -> bool:
        '''
        Store response data for idempotency checking.

        Returns True if stored successfully, False otherwise.
        '''
        record = {
            'body_hash': body_hash,
            'response_data': response_data,
            'status_code': status_code,
            'created_at': datetime.now(timezone.utc).isoformat(),
        }
        try:
            return bool(self.redis.setex(idempotency_key, ttl_hours * 3600, json.dumps(record, default=str)))
        except redis.RedisError as e:
            logger.error("Failed to store idempotency record", idempotency_key=idempotency_key, error=str(e))
            return False

    def get_record(self, idempotency_key: str) -> Optional[Dict[str, Any]]:
        '''Return the stored record for a key, or None.'''
        try:
            cached = self.redis.get(idempotency_key)
        except redis.RedisError as e:
            logger.error("Failed to retrieve idempotency record", idempotency_key=idempotency_key, error=str(e))
            return None
        if not cached:
            return None
        try:
            return json.loads(cached)
        except ValueError:
            return None

    def process_request_idempotency(
        self,
        user_id: str,
        body_hash: str,
        custom_idempotency_key: Optional[str]
    ) -> Tuple[bool, Optional[Dict[str, Any]], Optional[int]]:
        '''
        Process request idempotency check.

        Returns:
        - (True, None, None): Proceed with request processing
        - (False, response_data, status_code): Return cached/error response immediately
        '''
        if not custom_idempotency_key:
            return True, None, None

        key = self.generate_idempotency_key(user_id, custom_idempotency_key)
        record = self.get_record(key)
        if record is None:
            return True, None, None

        if record.get('body_hash') == body_hash:
            logger.log_idempotency_event('replay', idempotency_key=custom_idempotency_key, user_id=user_id)
            return False, record.get('response_data'), record.get('status_code', 200)

        logger.log_idempotency_event('conflict', idempotency_key=custom_idempotency_key, user_id=user_id)
        return False, {
            'error': 'idempotency_conflict',
            'message': 'Request with same idempotency key but different body already processed',
        }, 409

    def health_check(self) -> Dict[str, Any]:
        '''Perform health check on idempotency service.'''
        try:
            ping_result = self.redis.ping()
            return {
                'status': 'healthy',
                'redis_ping': ping_result,
                'timestamp': datetime.now(timezone.utc).isoformat()
            }
        except redis.RedisError as e:
            return {
                'status': 'unhealthy',
                'error': str(e),
                'timestamp': datetime.now(timezone.utc).isoformat()
            }
