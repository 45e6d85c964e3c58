"""
Unit tests for the storage catalogs.

The S3 catalog is exercised against a mocked boto3 client.
"""

from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError

from retentiond.storage.catalog import (
    InMemoryStorageCatalog,
    S3StorageCatalog,
    create_storage_catalog,
)
from retentiond.storage.retention_config import StorageSettings
from retentiond.storage.retention_models import ListingError, StorageError


NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def _settings(**kwargs):
    values = dict(bucket_name="db-backups", access_key_id="key", secret_access_key="secret",
                  endpoint_url="http://localhost:9000", region="us-east-1")
    values.update(kwargs)
    return StorageSettings(**values)


def _client_error(operation):
    return ClientError({'Error': {'Code': 'AccessDenied', 'Message': 'Access Denied'}}, operation)


class TestS3StorageCatalog:
    """Test cases for S3StorageCatalog."""

    def setup_method(self):
        self.client = Mock()
        self.paginator = Mock()
        self.client.get_paginator.return_value = self.paginator
        self.catalog = S3StorageCatalog(_settings(), client=self.client)

    @pytest.mark.asyncio
    async def test_list_objects_exhausts_pagination(self):
        self.paginator.paginate.return_value = [
            {'Contents': [
                {'Key': 'backups/a.sql.gz', 'Size': 10, 'LastModified': NOW},
                {'Key': 'backups/b.sql.gz', 'Size': 20, 'LastModified': NOW},
            ]},
            {'Contents': [
                {'Key': 'backups/c.sql.gz', 'Size': 30, 'LastModified': datetime(2024, 6, 1)},
            ]},
            {},
        ]

        objects = await self.catalog.list_objects('backups/')

        self.client.get_paginator.assert_called_once_with('list_objects_v2')
        self.paginator.paginate.assert_called_once_with(Bucket='db-backups', Prefix='backups/')
        assert [obj.key for obj in objects] == ['backups/a.sql.gz', 'backups/b.sql.gz', 'backups/c.sql.gz']
        assert [obj.size_bytes for obj in objects] == [10, 20, 30]
        assert objects[2].last_modified.tzinfo == timezone.utc

    @pytest.mark.asyncio
    async def test_list_failure_is_listing_error(self):
        self.paginator.paginate.side_effect = _client_error('ListObjectsV2')

        with pytest.raises(ListingError):
            await self.catalog.list_objects('backups/')

    @pytest.mark.asyncio
    async def test_failure_on_later_page_is_listing_error(self):
        def pages():
            yield {'Contents': [{'Key': 'backups/a.sql.gz', 'Size': 10, 'LastModified': NOW}]}
            raise _client_error('ListObjectsV2')

        self.paginator.paginate.return_value = pages()

        with pytest.raises(ListingError):
            await self.catalog.list_objects('backups/')

    @pytest.mark.asyncio
    async def test_delete_object(self):
        await self.catalog.delete_object('backups/a.sql.gz')

        self.client.delete_object.assert_called_once_with(Bucket='db-backups', Key='backups/a.sql.gz')

    @pytest.mark.asyncio
    async def test_delete_failure_is_storage_error(self):
        self.client.delete_object.side_effect = _client_error('DeleteObject')

        with pytest.raises(StorageError, match="Access Denied"):
            await self.catalog.delete_object('backups/a.sql.gz')

    @pytest.mark.asyncio
    async def test_close(self):
        await self.catalog.close()
        self.client.close.assert_called_once()

    def test_create_storage_catalog(self):
        catalog = create_storage_catalog(_settings())

        assert isinstance(catalog, S3StorageCatalog)
        assert catalog.bucket == 'db-backups'


class TestInMemoryStorageCatalog:
    """Test the in-memory catalog used by the test suite."""

    @pytest.mark.asyncio
    async def test_list_filters_by_prefix(self):
        catalog = InMemoryStorageCatalog()
        catalog.add('backups/b.sql', 1, NOW)
        catalog.add('backups/a.sql', 1, NOW)
        catalog.add('other/c.sql', 1, NOW)

        objects = await catalog.list_objects('backups/')

        assert [obj.key for obj in objects] == ['backups/a.sql', 'backups/b.sql']
        assert catalog.list_calls == 1

    @pytest.mark.asyncio
    async def test_list_error(self):
        catalog = InMemoryStorageCatalog()
        catalog.list_error = "listing interrupted"

        with pytest.raises(ListingError):
            await catalog.list_objects('')

    @pytest.mark.asyncio
    async def test_failing_delete_keeps_object(self):
        catalog = InMemoryStorageCatalog()
        catalog.add('backups/a.sql', 1, NOW)
        catalog.fail_deletes_for('backups/a.sql')

        with pytest.raises(StorageError):
            await catalog.delete_object('backups/a.sql')
        assert 'backups/a.sql' in catalog.objects
