# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Audit service for status changes and role assignments, correlated with traces.

Audit writes are best effort: a failing write is logged and never fails the
operation being audited.
"""

import logging
from typing import Dict, List, Optional, Any
from pymongo import DESCENDING
from opentelemetry import trace

from services.mongodb import MongoDBService
from models.entities import AuditLog

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class AuditService:
    """Service for audit logging with MongoDB persistence."""

    def __init__(self, mongo_service: MongoDBService):
        self.mongo_service = mongo_service
        self.collection_name = "audit_logs"

    def log_action(
        self,
        actor: Optional[str],
        entity: str,
        entity_id: str,
        action: str,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None
    ) -> Optional[str]:
        """
        Record an audit entry.

        Args:
            actor: Email of the acting user, None for system actions
            entity: Entity type (application, payment, user_role)
            entity_id: ID of the entity
            action: Action performed
            before: State before the action
            after: State after the action

        Returns:
            ID of the audit entry, or None when the write failed
        """
        with tracer.start_as_current_span("audit.log_action") as span:
            span_context = span.get_span_context()
            trace_id = format(span_context.trace_id, "032x") if span_context.is_valid else None

            try:
                entry = AuditLog(
                    actor=actor,
                    entity=entity,
                    entity_id=entity_id,
                    action=action,
                    before=before,
                    after=after,
                    trace_id=trace_id
                )
                document = entry.model_dump()
                document["_id"] = document.pop("id")
                audit_id = self.mongo_service.create(self.collection_name, document)
            except Exception as e:
                span.record_exception(e)
                logger.error(
                    "Failed to write audit entry",
                    extra={"entity": entity, "entity_id": entity_id, "action": action, "error": str(e)}
                )
                return None

            logger.info(
                f"Audit: {action} on {entity}",
                extra={
                    "audit_id": audit_id,
                    "actor": actor,
                    "entity": entity,
                    "entity_id": entity_id,
                    "action": action,
                    "trace_id": trace_id
                }
            )
            return audit_id

    def recent(self, entity: Optional[str] = None, entity_id: Optional[str] = None,
               limit: int = 50) -> List[Dict[str, Any]]:
        """Newest audit entries, optionally for one entity."""
        query: Dict[str, Any] = {}
        if entity:
            query["entity"] = entity
        if entity_id:
            query["entity_id"] = entity_id
        return self.mongo_service.find(
            self.collection_name, query, sort=[("timestamp", DESCENDING)], limit=limit
        )
