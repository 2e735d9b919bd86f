"""
Test lettura da S3 ed eventi storage.
"""
import io

import pytest
from botocore.exceptions import ClientError
from unittest.mock import MagicMock

from ingest.errors import MalformedBatchError, StorageFetchError
from ingest.storage import S3Fetcher, StorageRef, refs_from_event


def _event(*keys, bucket="liquidaciones"):
    return {
        "Records": [
            {"eventSource": "aws:s3", "s3": {"bucket": {"name": bucket}, "object": {"key": key}}}
            for key in keys
        ]
    }


class TestRefsFromEvent:
    """Test parsing evento S3."""

    def test_key_is_url_decoded(self):
        refs = refs_from_event(_event("uploads/Liquidacion+Marzo%282024%29.pdf"))
        assert refs == [StorageRef(bucket="liquidaciones", key="uploads/Liquidacion Marzo(2024).pdf")]
        assert refs[0].filename == "Liquidacion Marzo(2024).pdf"

    def test_multiple_records_keep_order(self):
        refs = refs_from_event(_event("a.pdf", "b.pdf"))
        assert [r.key for r in refs] == ["a.pdf", "b.pdf"]

    def test_allowed_bucket(self):
        assert refs_from_event(_event("a.pdf"), allowed_bucket="liquidaciones")
        with pytest.raises(MalformedBatchError):
            refs_from_event(_event("a.pdf", bucket="altro"), allowed_bucket="liquidaciones")

    @pytest.mark.parametrize("event", [
        None,
        {},
        {"Records": []},
        {"Records": [{"eventSource": "aws:s3", "s3": {"bucket": {"name": "b"}}}]},
        {"Records": [{"eventSource": "aws:sqs", "s3": {"bucket": {"name": "b"}, "object": {"key": "k"}}}]},
        {"Records": ["a.pdf"]},
        {"Records": [{"eventSource": "aws:s3", "s3": "oops"}]},
        {"Records": [{"eventSource": "aws:s3", "s3": {"bucket": "b", "object": {"key": "k"}}}]},
        {"Records": [{"eventSource": "aws:s3", "s3": {"bucket": {"name": "b"}, "object": "k"}}]},
    ])
    def test_malformed_event(self, event):
        with pytest.raises(MalformedBatchError):
            refs_from_event(event)


class TestS3Fetcher:
    """Test download con client mock."""

    @pytest.mark.asyncio
    async def test_fetch_bytes(self):
        client = MagicMock()
        client.get_object.return_value = {"Body": io.BytesIO(b"%PDF-1.4 contenuto")}
        fetcher = S3Fetcher(client=client, timeout_sec=1.0)

        content = await fetcher.fetch(StorageRef(bucket="b", key="dir/liq.pdf"))

        assert content == b"%PDF-1.4 contenuto"
        client.get_object.assert_called_once_with(Bucket="b", Key="dir/liq.pdf")

    @pytest.mark.asyncio
    async def test_client_error(self):
        client = MagicMock()
        client.get_object.side_effect = ClientError(
            {"Error": {"Code": "NoSuchKey", "Message": "Not Found"}}, "GetObject"
        )
        fetcher = S3Fetcher(client=client, timeout_sec=1.0)

        with pytest.raises(StorageFetchError) as exc_info:
            await fetcher.fetch(StorageRef(bucket="b", key="missing.pdf"))
        assert "s3://b/missing.pdf" in str(exc_info.value)
