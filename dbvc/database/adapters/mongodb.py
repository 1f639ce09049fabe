"""
MongoDB Document Store for the database version control engine.

This module provides the motor implementation of the document backup store:
one collection holding migration, schema snapshot and change event
documents, discriminated by ``entityType`` and keyed by ``id``.

Author: DBVC Engine
Version: 0.1.0
"""

from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection
from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from ...utils import format_timestamp, utc_now
from ..config import DatabaseEngine, DocumentStoreConfig
from ..exceptions import ConnectionError, DocumentStoreError, DuplicateDocumentError, wrap_database_error
from .base import DocumentStore


class MongoDocumentStore(DocumentStore):
    """Document backup store on MongoDB through motor."""

    def __init__(self, config: DocumentStoreConfig, client: Optional[AsyncIOMotorClient] = None):
        super().__init__(config.collection)
        self.config = config
        self._client = client
        self._owns_client = client is None
        self._collection: Optional[AsyncIOMotorCollection] = None

    @property
    def engine(self) -> DatabaseEngine:
        return DatabaseEngine.MONGODB

    def _build_connection_options(self) -> Dict[str, Any]:
        """Build MongoDB client options."""
        return {
            'host': self.config.url,
            'serverSelectionTimeoutMS': self.config.server_selection_timeout_ms,
            'connectTimeoutMS': self.config.connect_timeout_ms,
            'retryWrites': True,
            'w': 'majority',
        }

    async def connect(self) -> None:
        """Connect to MongoDB and prepare the collection."""
        if self._connected:
            return

        try:
            if self._client is None:
                self._client = AsyncIOMotorClient(**self._build_connection_options())

            await self._client.admin.command('ping')

            self._collection = self._client[self.config.database][self.collection_name]
            await self._collection.create_index([('entityType', ASCENDING), ('databaseId', ASCENDING)])

            self._connected = True
            self.logger.info(
                f"Connected to MongoDB document store: {self.config.database}.{self.collection_name}"
            )

        except Exception as e:
            raise ConnectionError(
                f"Failed to connect to MongoDB document store: {e}",
                database=self.config.database,
                original_error=e
            )

    async def disconnect(self) -> None:
        """Disconnect from MongoDB."""
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None
        self._collection = None
        self._connected = False
        self.logger.info("MongoDB document store disconnected")

    def _require_collection(self) -> AsyncIOMotorCollection:
        if self._collection is None:
            raise DocumentStoreError(
                "MongoDB document store is not connected",
                collection=self.collection_name
            )
        return self._collection

    async def create_document(self, document: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a document; ``id`` doubles as the MongoDB ``_id``."""
        collection = self._require_collection()
        document_id = document['id']

        try:
            await collection.insert_one({**document, '_id': document_id})
            self.logger.debug(f"Created {document.get('entityType')} document {document_id}")
            return dict(document)

        except DuplicateKeyError as e:
            raise DuplicateDocumentError(
                f"Document already exists: {document_id}",
                collection=self.collection_name,
                document_id=document_id,
                original_error=e
            )
        except PyMongoError as e:
            raise DocumentStoreError(
                f"Failed to create document {document_id}: {e}",
                collection=self.collection_name,
                document_id=document_id,
                original_error=e
            )

    async def get_document(self, document_id: str) -> Optional[Dict[str, Any]]:
        collection = self._require_collection()
        try:
            document = await collection.find_one({'_id': document_id})
        except PyMongoError as e:
            raise wrap_database_error(
                e,
                operation="get_document",
                database_name=self.config.database,
                engine=self.engine.value
            )
        if document is None:
            return None
        document.pop('_id', None)
        return document

    async def find_documents(self, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        collection = self._require_collection()
        try:
            documents = await collection.find(filters).sort('id', ASCENDING).to_list(length=None)
        except PyMongoError as e:
            raise wrap_database_error(
                e,
                operation="find_documents",
                database_name=self.config.database,
                engine=self.engine.value
            )
        for document in documents:
            document.pop('_id', None)
        return documents

    async def health_check(self) -> Dict[str, Any]:
        """Perform MongoDB health check."""
        started = utc_now()
        if self._client is None:
            return {
                'healthy': False,
                'error': 'MongoDB client not initialized',
                'timestamp': format_timestamp()
            }
        try:
            await self._client.admin.command('ping')
            return {
                'healthy': True,
                'engine': self.engine.value,
                'collection': self.collection_name,
                'response_time_ms': (utc_now() - started).total_seconds() * 1000,
                'timestamp': format_timestamp()
            }
        except PyMongoError as e:
            self.logger.warning(f"MongoDB health check failed: {e}")
            return {
                'healthy': False,
                'engine': self.engine.value,
                'error': str(e),
                'timestamp': format_timestamp()
            }
