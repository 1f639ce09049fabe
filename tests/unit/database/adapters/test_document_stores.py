"""
Unit tests for the document backup stores.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo.errors import DuplicateKeyError, PyMongoError

from dbvc.database.adapters import InMemoryDocumentStore, MongoDocumentStore
from dbvc.database.config import DocumentStoreConfig
from dbvc.database.exceptions import DocumentStoreError, DuplicateDocumentError


class TestInMemoryDocumentStore:
    """Test cases for InMemoryDocumentStore."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, document_store):
        """Test storing and reading back a document."""
        await document_store.connect()
        await document_store.create_document({'id': "a", 'entityType': "migration", 'body': [1]})

        document = await document_store.get_document("a")
        assert document == {'id': "a", 'entityType': "migration", 'body': [1]}
        assert await document_store.get_document("missing") is None

    @pytest.mark.asyncio
    async def test_documents_are_copied(self, document_store):
        """Test that callers cannot change stored documents."""
        original = {'id': "a", 'tags': ["x"]}
        await document_store.create_document(original)
        original['tags'].append("y")

        fetched = await document_store.get_document("a")
        fetched['tags'].append("z")

        assert (await document_store.get_document("a"))['tags'] == ["x"]

    @pytest.mark.asyncio
    async def test_duplicate_id(self, document_store):
        """Test that documents are create-only."""
        await document_store.create_document({'id': "a"})
        with pytest.raises(DuplicateDocumentError):
            await document_store.create_document({'id': "a"})

    @pytest.mark.asyncio
    async def test_missing_id(self, document_store):
        """Test that a document needs an id."""
        with pytest.raises(DocumentStoreError):
            await document_store.create_document({'entityType': "migration"})

    @pytest.mark.asyncio
    async def test_find_by_discriminator(self, document_store):
        """Test filtering by entity type."""
        await document_store.create_document({'id': "b", 'entityType': "change_event", 'databaseId': "app"})
        await document_store.create_document({'id': "a", 'entityType': "change_event", 'databaseId': "app"})
        await document_store.create_document({'id': "c", 'entityType': "migration", 'databaseId': "app"})

        events = await document_store.find_documents({'entityType': "change_event"})
        assert [event['id'] for event in events] == ["a", "b"]
        assert len(document_store) == 3


class TestMongoDocumentStore:
    """Test cases for MongoDocumentStore with a mocked client."""

    @pytest.fixture
    def collection(self):
        collection = MagicMock()
        collection.insert_one = AsyncMock()
        collection.find_one = AsyncMock()
        collection.create_index = AsyncMock()
        return collection

    @pytest.fixture
    def mongo_store(self, collection):
        client = MagicMock()
        client.admin.command = AsyncMock(return_value={'ok': 1})
        client.__getitem__.return_value.__getitem__.return_value = collection
        config = DocumentStoreConfig(url="mongodb://localhost:27017", database="dbvc", collection="version-control")
        return MongoDocumentStore(config, client=client)

    @pytest.mark.asyncio
    async def test_connect(self, mongo_store, collection):
        """Test connecting pings the server and prepares the index."""
        await mongo_store.connect()
        assert mongo_store.is_connected
        collection.create_index.assert_awaited()

    @pytest.mark.asyncio
    async def test_create_document_uses_id_as_key(self, mongo_store, collection):
        """Test that the document id becomes the primary key."""
        await mongo_store.connect()
        await mongo_store.create_document({'id': "app_m1", 'entityType': "migration"})

        inserted = collection.insert_one.await_args.args[0]
        assert inserted['_id'] == "app_m1"
        assert inserted['entityType'] == "migration"

    @pytest.mark.asyncio
    async def test_duplicate_key(self, mongo_store, collection):
        """Test duplicate key mapping."""
        collection.insert_one.side_effect = DuplicateKeyError("E11000 duplicate key")
        await mongo_store.connect()
        with pytest.raises(DuplicateDocumentError):
            await mongo_store.create_document({'id': "app_m1"})

    @pytest.mark.asyncio
    async def test_driver_error(self, mongo_store, collection):
        """Test driver error mapping."""
        collection.insert_one.side_effect = PyMongoError("server unavailable")
        await mongo_store.connect()
        with pytest.raises(DocumentStoreError):
            await mongo_store.create_document({'id': "app_m1"})

    @pytest.mark.asyncio
    async def test_get_document_strips_key(self, mongo_store, collection):
        """Test that the storage key is not returned."""
        collection.find_one.return_value = {'_id': "app_m1", 'id': "app_m1", 'checksum': "abc"}
        await mongo_store.connect()

        document = await mongo_store.get_document("app_m1")
        assert document == {'id': "app_m1", 'checksum': "abc"}
