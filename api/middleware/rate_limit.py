# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Rate limiting middleware for API endpoints.
Fixed-window counters in Redis; requests pass when Redis is unavailable.
"""

from functools import wraps
from flask import request, jsonify, g, current_app
from typing import Dict, Any, Optional, Callable
import time
import hashlib
import logging

from services.hal import HalFormatter

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
DEFAULT_WINDOW_SECONDS = 900


class RateLimiter:
    """Redis-based fixed window rate limiter."""

    def __init__(self, redis_service, hal_formatter: HalFormatter):
        self.redis_service = redis_service
        self.hal_formatter = hal_formatter

    def get_client_identifier(self, user_context=None) -> str:
        """
        Get unique identifier for rate limiting.

        Args:
            user_context: Optional user context

        Returns:
            Unique client identifier
        """
        if user_context:
            return f"user:{user_context.user_id}"

        ip_address = request.headers.get('X-Forwarded-For', request.remote_addr or 'unknown').split(',')[0].strip()
        user_agent = request.headers.get('User-Agent', '')
        identifier_hash = hashlib.md5(f"{ip_address}:{user_agent}".encode()).hexdigest()
        return f"ip:{identifier_hash}"

    def get_rate_limit_key(self, identifier: str, endpoint: str, window_seconds: int) -> str:
        window_start = int(time.time()) // window_seconds
        return f"rate_limit:{identifier}:{endpoint}:{window_start}"

    def check_rate_limit(
        self,
        identifier: str,
        endpoint: str,
        limit: int,
        window_seconds: int = DEFAULT_WINDOW_SECONDS
    ) -> Dict[str, Any]:
        """
        Count this request and report whether it is within the limit.

        Args:
            identifier: Client identifier
            endpoint: Endpoint identifier
            limit: Maximum requests allowed
            window_seconds: Time window in seconds

        Returns:
            Dictionary with rate limit status
        """
        now = int(time.time())
        reset_time = (now // window_seconds + 1) * window_seconds

        count = self.redis_service.increment_window(
            self.get_rate_limit_key(identifier, endpoint, window_seconds), window_seconds
        )
        if count is None:
            # Redis unavailable
            return {
                'allowed': True,
                'limit': limit,
                'remaining': limit,
                'reset_time': reset_time,
                'retry_after': 0
            }

        allowed = count <= limit
        return {
            'allowed': allowed,
            'limit': limit,
            'remaining': max(0, limit - count),
            'reset_time': reset_time,
            'retry_after': 0 if allowed else reset_time - now
        }

    def add_rate_limit_headers(self, response, rate_limit_info: Dict[str, Any]):
        response.headers['X-RateLimit-Limit'] = str(rate_limit_info['limit'])
        response.headers['X-RateLimit-Remaining'] = str(rate_limit_info['remaining'])
        response.headers['X-RateLimit-Reset'] = str(rate_limit_info['reset_time'])

        if rate_limit_info['retry_after'] > 0:
            response.headers['Retry-After'] = str(rate_limit_info['retry_after'])

        return response


def rate_limit(
    limit: Optional[int] = None,
    window_seconds: Optional[int] = None,
    endpoint: Optional[str] = None,
    per_user: bool = True
):
    """
    Decorator for rate limiting endpoints.

    Limits default to ``RATE_LIMIT_REQUESTS`` and ``RATE_LIMIT_WINDOW`` from
    the app config.

    Args:
        limit: Maximum requests allowed
        window_seconds: Time window in seconds
        endpoint: Custom endpoint identifier
        per_user: Whether to apply limit per user (vs per IP)

    Returns:
        Decorator function
    """
    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def decorated_function(*args, **kwargs):
            redis_service = getattr(current_app, 'redis_service', None)
            if redis_service is None:
                return f(*args, **kwargs)

            max_requests = limit or current_app.config.get('RATE_LIMIT_REQUESTS', DEFAULT_LIMIT)
            window = window_seconds or current_app.config.get('RATE_LIMIT_WINDOW', DEFAULT_WINDOW_SECONDS)

            rate_limiter = RateLimiter(redis_service, current_app.hal_formatter)
            user_context = getattr(g, 'user_context', None) if per_user else None
            identifier = rate_limiter.get_client_identifier(user_context)
            endpoint_name = endpoint or request.endpoint or f.__name__

            rate_limit_info = rate_limiter.check_rate_limit(identifier, endpoint_name, max_requests, window)

            if not rate_limit_info['allowed']:
                logger.warning(
                    "Rate limit exceeded",
                    extra={
                        'identifier': identifier,
                        'endpoint': endpoint_name,
                        'limit': max_requests,
                        'retry_after': rate_limit_info['retry_after']
                    }
                )

                error_response = rate_limiter.hal_formatter.builder.build_error_response(
                    "rate-limit-exceeded",
                    "Rate Limit Exceeded",
                    429,
                    f"Rate limit of {max_requests} requests per {window} seconds exceeded",
                    request.path
                )
                response = jsonify(error_response)
                response.status_code = 429
                rate_limiter.add_rate_limit_headers(response, rate_limit_info)
                return response

            response = current_app.make_response(f(*args, **kwargs))
            rate_limiter.add_rate_limit_headers(response, rate_limit_info)
            return response

        return decorated_function
    return decorator
