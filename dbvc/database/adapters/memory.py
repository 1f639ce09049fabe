"""
In-memory Document Store for the database version control engine.

Process-local implementation of the document backup store, used when no
MongoDB URL is configured and in tests. Documents are deep-copied on the
way in and out so stored documents cannot be changed by callers.

Author: DBVC Engine
Version: 0.1.0
"""

import copy
import threading
from typing import Any, Dict, List, Optional

from ...utils import format_timestamp
from ..config import DatabaseEngine
from ..exceptions import DocumentStoreError, DuplicateDocumentError
from .base import DocumentStore


class InMemoryDocumentStore(DocumentStore):
    """Document store kept in a dictionary."""

    def __init__(self, collection_name: str = "version-control"):
        super().__init__(collection_name)
        self._documents: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.RLock()

    @property
    def engine(self) -> DatabaseEngine:
        return DatabaseEngine.MEMORY

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        # Documents survive a reconnect
        self._connected = False

    async def create_document(self, document: Dict[str, Any]) -> Dict[str, Any]:
        document_id = document.get('id')
        if not document_id:
            raise DocumentStoreError("Document has no id", collection=self.collection_name)

        with self._lock:
            if document_id in self._documents:
                raise DuplicateDocumentError(
                    f"Document already exists: {document_id}",
                    collection=self.collection_name,
                    document_id=document_id
                )
            self._documents[document_id] = copy.deepcopy(document)

        self.logger.debug(f"Created {document.get('entityType')} document {document_id}")
        return copy.deepcopy(document)

    async def get_document(self, document_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            document = self._documents.get(document_id)
            return copy.deepcopy(document) if document is not None else None

    async def find_documents(self, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            matches = [
                copy.deepcopy(document)
                for document in self._documents.values()
                if all(document.get(key) == value for key, value in filters.items())
            ]
        return sorted(matches, key=lambda document: document['id'])

    async def health_check(self) -> Dict[str, Any]:
        return {
            'healthy': True,
            'engine': self.engine.value,
            'collection': self.collection_name,
            'documents': len(self._documents),
            'timestamp': format_timestamp()
        }

    def __len__(self) -> int:
        return len(self._documents)
