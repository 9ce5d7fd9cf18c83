# SPDX-License-Identifier: Apache-2.0

"""
Permission resolution with a process-local TTL cache.

The resolver turns an identity (an email) into a role and permission set.
Entries live for five minutes by default and are dropped explicitly when a
role changes. The cache is per process; other instances keep serving their
own entries until those expire.
"""

import os
import time
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Tuple
from opentelemetry import trace

from domain.authorization import (
    ResolvedPermissions,
    default_permissions,
    higher_role,
    permissions_for_role,
)
from models.enums import UserRole

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

DEFAULT_TTL_SECONDS = 300


@dataclass
class CacheEntry:
    """One cached resolution."""
    value: ResolvedPermissions
    inserted_at: float


class PermissionCache:
    """
    Thread-safe TTL cache keyed by identity.

    Args:
        ttl_seconds: Lifetime of an entry
        clock: Monotonic time source, injectable for tests
    """

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[ResolvedPermissions]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.inserted_at >= self.ttl_seconds:
                del self._entries[key]
                return None
            return entry.value

    def put(self, key: str, value: ResolvedPermissions) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(value=value, inserted_at=self._clock())

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate_all(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def parse_admin_allowlist(raw: Optional[str]) -> Tuple[str, ...]:
    """Parse a comma separated email list, lowercased and without blanks."""
    if not raw:
        return ()
    return tuple(email.strip().lower() for email in raw.split(",") if email.strip())


class PermissionResolver:
    """
    Resolve identities into role and permissions.

    Args:
        role_store: Object exposing ``get_role_by_email(email) -> Optional[str]``
        cache: PermissionCache shared by this process
        admin_allowlist: Emails that are always at least ``admin``
    """

    def __init__(self, role_store, cache: Optional[PermissionCache] = None,
                 admin_allowlist: Iterable[str] = ()):
        self.role_store = role_store
        self.cache = cache or PermissionCache()
        self.admin_allowlist = frozenset(email.strip().lower() for email in admin_allowlist)

    @staticmethod
    def _normalize(identity: Optional[str]) -> str:
        return (identity or "").strip().lower()

    def resolve(self, identity: Optional[str]) -> ResolvedPermissions:
        """
        Resolve the permissions of ``identity``.

        Empty identities resolve to the base ``user`` set. Lookup failures
        are logged and also resolve to ``user``; those results are not
        cached so the next call retries the store.

        Args:
            identity: Email of the caller, may be None

        Returns:
            ResolvedPermissions for the identity
        """
        key = self._normalize(identity)
        if not key:
            return default_permissions()

        cached = self.cache.get(key)
        if cached is not None:
            return cached

        with tracer.start_as_current_span("permissions.resolve") as span:
            try:
                role = self.role_store.get_role_by_email(key)
            except Exception as e:
                span.set_attribute("permissions.lookup_failed", True)
                logger.error(
                    "Role lookup failed, falling back to user permissions",
                    extra={"identity": key, "error": str(e)}
                )
                return default_permissions()

            role = role or UserRole.USER.value
            if key in self.admin_allowlist:
                role = higher_role(role, UserRole.ADMIN.value)

            resolved = permissions_for_role(role)
            span.set_attributes({
                "permissions.role": resolved.role,
                "permissions.count": len(resolved.permissions),
            })
            self.cache.put(key, resolved)

            logger.debug(f"Resolved permissions for {key}: role={resolved.role}")
            return resolved

    def invalidate(self, identity: Optional[str]) -> None:
        """Drop the cached entry of one identity."""
        key = self._normalize(identity)
        if key and self.cache.invalidate(key):
            logger.info("Invalidated cached permissions", extra={"identity": key})

    def invalidate_all(self) -> None:
        """Drop every cached entry."""
        count = self.cache.invalidate_all()
        logger.info(f"Invalidated {count} cached permission entries")


def create_permission_resolver(role_store) -> PermissionResolver:
    """Build a resolver from environment configuration."""
    ttl = float(os.getenv("PERMISSION_CACHE_TTL", str(DEFAULT_TTL_SECONDS)))
    allowlist = parse_admin_allowlist(os.getenv("ADMIN_EMAILS"))
    return PermissionResolver(role_store, PermissionCache(ttl_seconds=ttl), allowlist)
