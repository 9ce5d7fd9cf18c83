# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
MongoDB service layer with connection pooling and generic collection operations.

Documents use string ``_id`` values (ObjectId hex) so IDs can be searched and
returned to clients without conversion.
"""

import os
import logging
from typing import List, Dict, Optional, Any, Iterable, Tuple
from pymongo import MongoClient, ASCENDING, DESCENDING, UpdateOne
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import (
    ConnectionFailure,
    ServerSelectionTimeoutError,
    DuplicateKeyError,
)
from bson import ObjectId

logger = logging.getLogger(__name__)


class PaginationResult:
    """Result container for paginated queries."""

    def __init__(self, items: List[Dict], total: int, page: int, page_size: int):
        self.items = items
        self.total = total
        self.page = page
        self.page_size = page_size
        self.total_pages = (total + page_size - 1) // page_size
        self.has_next = page < self.total_pages
        self.has_prev = page > 1


def to_api_document(document: Optional[Dict]) -> Optional[Dict]:
    """Rename ``_id`` to ``id`` for JSON serialization."""
    if document is None:
        return None
    document = dict(document)
    if "_id" in document:
        document["id"] = str(document.pop("_id"))
    return document


class MongoDBService:
    """MongoDB service with connection pooling."""

    def __init__(self, connection_string: str = None, database_name: str = None,
                 client: Optional[MongoClient] = None):
        """Initialize MongoDB service with connection pooling."""
        self.connection_string = connection_string or os.getenv(
            'MONGODB_URI',
            'mongodb://localhost:27017/permit_portal_dev'
        )
        self.database_name = database_name or os.getenv('MONGODB_DATABASE', 'permit_portal_dev')
        self._client: Optional[MongoClient] = client
        self._database: Optional[Database] = None

        # Connection pool settings
        self.max_pool_size = int(os.getenv('MONGODB_MAX_POOL_SIZE', '10'))
        self.min_pool_size = int(os.getenv('MONGODB_MIN_POOL_SIZE', '1'))
        self.max_idle_time_ms = int(os.getenv('MONGODB_MAX_IDLE_TIME_MS', '30000'))
        self.server_selection_timeout_ms = int(os.getenv('MONGODB_SERVER_SELECTION_TIMEOUT_MS', '5000'))

        logger.info(f"MongoDB service initialized for database: {self.database_name}")

    @property
    def client(self) -> MongoClient:
        """Get MongoDB client with connection pooling."""
        if self._client is None:
            try:
                self._client = MongoClient(
                    self.connection_string,
                    maxPoolSize=self.max_pool_size,
                    minPoolSize=self.min_pool_size,
                    maxIdleTimeMS=self.max_idle_time_ms,
                    serverSelectionTimeoutMS=self.server_selection_timeout_ms,
                    retryWrites=True,
                    retryReads=True
                )
                # Test connection
                self._client.admin.command('ping')
                logger.info("MongoDB connection established successfully")
            except (ConnectionFailure, ServerSelectionTimeoutError) as e:
                logger.error(f"Failed to connect to MongoDB: {e}")
                self._client = None
                raise

        return self._client

    @property
    def database(self) -> Database:
        """Get MongoDB database."""
        if self._database is None:
            self._database = self.client[self.database_name]
        return self._database

    def get_collection(self, collection_name: str) -> Collection:
        """Get MongoDB collection."""
        return self.database[collection_name]

    def close_connection(self) -> None:
        """Close MongoDB connection."""
        if self._client:
            self._client.close()
            self._client = None
            self._database = None
            logger.info("MongoDB connection closed")

    def health_check(self) -> Dict[str, Any]:
        """Check MongoDB connection health."""
        try:
            result = self.client.admin.command('ping')
            server_info = self.client.server_info()

            return {
                'status': 'healthy',
                'ping': result.get('ok') == 1,
                'version': server_info.get('version'),
                'database': self.database_name,
                'connection_pool_size': self.max_pool_size
            }
        except Exception as e:
            logger.error(f"MongoDB health check failed: {e}")
            return {
                'status': 'unhealthy',
                'error': str(e),
                'database': self.database_name
            }

    # Generic operations

    def create(self, collection: str, document: Dict) -> str:
        """Insert a document, assigning a string ``_id`` when missing."""
        try:
            document = dict(document)
            if "id" in document and "_id" not in document:
                document["_id"] = document.pop("id")
            document.setdefault("_id", str(ObjectId()))

            result = self.get_collection(collection).insert_one(document)

            logger.info(f"Created document in {collection}: {result.inserted_id}")
            return str(result.inserted_id)

        except DuplicateKeyError as e:
            logger.error(f"Duplicate key error in {collection}: {e}")
            raise ValueError("Document with this identifier already exists")
        except Exception as e:
            logger.error(f"Failed to create document in {collection}: {e}")
            raise

    def find_one(self, collection: str, query: Dict) -> Optional[Dict]:
        """Find a single document matching a query."""
        try:
            return to_api_document(self.get_collection(collection).find_one(query))
        except Exception as e:
            logger.error(f"Failed to find document in {collection}: {e}")
            raise

    def find_by_id(self, collection: str, doc_id: str) -> Optional[Dict]:
        """Find a single document by ID."""
        document = self.find_one(collection, {"_id": doc_id})
        if document is None:
            logger.debug(f"Document {doc_id} not found in {collection}")
        return document

    def find(self, collection: str, query: Dict = None, sort: List[Tuple[str, int]] = None,
             limit: int = 0) -> List[Dict]:
        """Find documents matching a query."""
        try:
            cursor = self.get_collection(collection).find(query or {})
            if sort:
                cursor = cursor.sort(sort)
            if limit:
                cursor = cursor.limit(limit)

            documents = [to_api_document(doc) for doc in cursor]
            logger.debug(f"Found {len(documents)} documents in {collection}")
            return documents

        except Exception as e:
            logger.error(f"Failed to find documents in {collection}: {e}")
            raise

    def update_by_id(self, collection: str, doc_id: str, updates: Dict) -> bool:
        """
        Set fields on a document.

        Returns True when the document exists, even if the values were
        already equal.
        """
        try:
            result = self.get_collection(collection).update_one({"_id": doc_id}, {"$set": updates})

            if result.matched_count > 0:
                logger.info(f"Updated document {doc_id} in {collection}")
                return True
            logger.warning(f"No document updated for {doc_id} in {collection}")
            return False

        except Exception as e:
            logger.error(f"Failed to update document {doc_id} in {collection}: {e}")
            raise

    def update_many(self, collection: str, query: Dict, updates: Dict) -> int:
        """Set fields on every document matching a query; returns the matched count."""
        try:
            result = self.get_collection(collection).update_many(query, {"$set": updates})
            logger.info(f"Updated {result.matched_count} documents in {collection}")
            return result.matched_count
        except Exception as e:
            logger.error(f"Failed to update documents in {collection}: {e}")
            raise

    def update_each(self, collection: str, updates_by_id: Dict[str, Dict]) -> int:
        """
        Apply per-document ``$set`` updates in one unordered bulk write.

        Returns the number of matched documents. Failures of individual
        operations do not stop the others.
        """
        if not updates_by_id:
            return 0
        operations = [
            UpdateOne({"_id": doc_id}, {"$set": updates})
            for doc_id, updates in updates_by_id.items()
        ]
        try:
            result = self.get_collection(collection).bulk_write(operations, ordered=False)
            logger.info(f"Bulk updated {result.matched_count} documents in {collection}")
            return result.matched_count
        except Exception as e:
            logger.error(f"Failed bulk update in {collection}: {e}")
            raise

    def upsert(self, collection: str, query: Dict, updates: Dict,
               on_insert: Dict = None) -> Dict:
        """Update the document matching ``query`` or insert it; returns the stored document."""
        try:
            operation: Dict[str, Any] = {"$set": updates}
            set_on_insert = {"_id": str(ObjectId())}
            set_on_insert.update(on_insert or {})
            operation["$setOnInsert"] = set_on_insert

            collection_obj = self.get_collection(collection)
            collection_obj.update_one(query, operation, upsert=True)
            document = to_api_document(collection_obj.find_one(query))

            logger.info(f"Upserted document in {collection}")
            return document

        except Exception as e:
            logger.error(f"Failed to upsert document in {collection}: {e}")
            raise

    def delete_by_id(self, collection: str, doc_id: str) -> bool:
        """Delete a document by ID."""
        try:
            result = self.get_collection(collection).delete_one({"_id": doc_id})
            if result.deleted_count > 0:
                logger.warning(f"Deleted document {doc_id} in {collection}")
                return True
            logger.warning(f"No document deleted for {doc_id} in {collection}")
            return False
        except Exception as e:
            logger.error(f"Failed to delete document {doc_id} in {collection}: {e}")
            raise

    def paginate(self, collection: str, query: Dict = None, page: int = 1, page_size: int = 20,
                 sort_by: str = "created_at", sort_order: int = DESCENDING) -> PaginationResult:
        """Paginate documents with sorting and filtering."""
        try:
            query = query or {}
            collection_obj = self.get_collection(collection)

            skip = (page - 1) * page_size
            total = collection_obj.count_documents(query)

            cursor = collection_obj.find(query).sort(sort_by, sort_order).skip(skip).limit(page_size)
            documents = [to_api_document(doc) for doc in cursor]

            logger.debug(f"Paginated {len(documents)} documents from {collection} (page {page})")
            return PaginationResult(documents, total, page, page_size)

        except Exception as e:
            logger.error(f"Failed to paginate documents in {collection}: {e}")
            raise

    def count(self, collection: str, query: Dict = None) -> int:
        """Count documents matching a query."""
        try:
            return self.get_collection(collection).count_documents(query or {})
        except Exception as e:
            logger.error(f"Failed to count documents in {collection}: {e}")
            raise

    def aggregate(self, collection: str, pipeline: List[Dict]) -> List[Dict]:
        """Run an aggregation pipeline."""
        try:
            results = list(self.get_collection(collection).aggregate(pipeline))
            logger.debug(f"Aggregation returned {len(results)} results from {collection}")
            return results
        except Exception as e:
            logger.error(f"Failed to run aggregation in {collection}: {e}")
            raise

    def watch(self, collection: str, pipeline: List[Dict] = None) -> Iterable[Dict]:
        """
        Open a change stream on a collection.

        Requires a replica set or sharded cluster. Update events carry the
        post-image and, when the collection has pre-images enabled, the
        pre-image too.
        """
        return self.get_collection(collection).watch(
            pipeline or [],
            full_document="updateLookup",
            full_document_before_change="whenAvailable",
        )

    # Index Management

    def create_indexes(self) -> None:
        """Create performance indexes for all collections."""
        try:
            logger.info("Creating MongoDB indexes...")

            applicants = self.get_collection("applicants")
            applicants.create_index("email", unique=True)

            applications = self.get_collection("applications")
            applications.create_index([("applicant_id", ASCENDING), ("created_at", DESCENDING)])
            applications.create_index([("status", ASCENDING), ("created_at", DESCENDING)])
            applications.create_index("reference_no", unique=True)

            documents = self.get_collection("documents")
            documents.create_index([("application_id", ASCENDING), ("created_at", DESCENDING)])

            payments = self.get_collection("payments")
            payments.create_index("external_ref")
            payments.create_index("application_id")

            user_roles = self.get_collection("user_roles")
            user_roles.create_index("user_id", unique=True)
            user_roles.create_index("email")

            audit_logs = self.get_collection("audit_logs")
            audit_logs.create_index([("entity", ASCENDING), ("entity_id", ASCENDING), ("timestamp", DESCENDING)])
            audit_logs.create_index("trace_id")

            logger.info("MongoDB indexes created successfully")

        except Exception as e:
            logger.error(f"Failed to create MongoDB indexes: {e}")
            raise

    def enable_change_pre_images(self, collection: str) -> None:
        """Enable pre-images so update events carry the prior status."""
        try:
            self.database.command({"collMod": collection, "changeStreamPreAndPostImages": {"enabled": True}})
            logger.info(f"Enabled change stream pre-images on {collection}")
        except Exception as e:
            logger.error(f"Failed to enable pre-images on {collection}: {e}")
            raise


# Singleton instance for application use
_mongodb_service: Optional[MongoDBService] = None


def get_mongodb_service() -> MongoDBService:
    """Get singleton MongoDB service instance."""
    global _mongodb_service
    if _mongodb_service is None:
        _mongodb_service = MongoDBService()
    return _mongodb_service


def close_mongodb_connection() -> None:
    """Close MongoDB connection (for cleanup)."""
    global _mongodb_service
    if _mongodb_service:
        _mongodb_service.close_connection()
