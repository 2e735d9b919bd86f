"""
Lettura liquidazioni da S3 (eventi storage).
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, List, Optional
from urllib.parse import unquote_plus

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from core.config import get_config
from ingest.errors import MalformedBatchError, StorageFetchError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorageRef:
    bucket: str
    key: str

    @property
    def filename(self) -> str:
        return self.key.split("/")[-1]


def refs_from_event(event: Any, allowed_bucket: Optional[str] = None) -> List[StorageRef]:
    """
    Converte un evento storage ({"Records": [...]}) in riferimenti bucket/key.

    Le key arrivano URL-encoded (spazi come "+"): vengono decodificate.
    Con allowed_bucket impostato, record di altri bucket sono rifiutati.

    Raises:
        MalformedBatchError: evento senza Records o record senza bucket/key
    """
    if not isinstance(event, dict):
        raise MalformedBatchError("Evento non valido: atteso oggetto con 'Records'")
    records = event.get("Records")
    if not isinstance(records, list) or not records:
        raise MalformedBatchError("Evento non valido: 'Records' mancante o vuoto")

    refs = []
    for index, record in enumerate(records):
        if not isinstance(record, dict):
            raise MalformedBatchError(f"Record {index} non valido: atteso oggetto")
        if record.get("eventSource", "aws:s3") != "aws:s3":
            raise MalformedBatchError(f"Record {index} non valido: eventSource {record.get('eventSource')!r}")
        s3_info = record.get("s3")
        bucket_info = s3_info.get("bucket") if isinstance(s3_info, dict) else None
        object_info = s3_info.get("object") if isinstance(s3_info, dict) else None
        if not isinstance(bucket_info, dict) or not isinstance(object_info, dict):
            raise MalformedBatchError(
                f"Record {index} non valido: attesi s3.bucket e s3.object come oggetti"
            )
        bucket = bucket_info.get("name")
        key = object_info.get("key")
        if not bucket or not key:
            raise MalformedBatchError(f"Record {index} non valido: bucket o key mancanti")
        if allowed_bucket and bucket != allowed_bucket:
            raise MalformedBatchError(f"Record {index} non valido: bucket '{bucket}' non ammesso")
        refs.append(StorageRef(bucket=bucket, key=unquote_plus(str(key))))
    return refs


class S3Fetcher:
    """Legge oggetti S3 in un worker thread con timeout."""

    def __init__(self, client=None, timeout_sec: Optional[float] = None, region: Optional[str] = None):
        config = get_config()
        self.timeout_sec = timeout_sec if timeout_sec is not None else config.fetch_timeout_sec
        self._client = client
        self._region = region or config.aws_region

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client(
                "s3",
                region_name=self._region,
                config=BotoConfig(retries={"max_attempts": 3, "mode": "standard"}),
            )
        return self._client

    def _get_object_bytes(self, ref: StorageRef) -> bytes:
        response = self.client.get_object(Bucket=ref.bucket, Key=ref.key)
        return response["Body"].read()

    async def fetch(self, ref: StorageRef) -> bytes:
        """
        Scarica l'oggetto referenziato.

        Raises:
            StorageFetchError: errore S3 o timeout
        """
        try:
            content = await asyncio.wait_for(
                asyncio.to_thread(self._get_object_bytes, ref),
                timeout=self.timeout_sec,
            )
        except asyncio.TimeoutError as e:
            raise StorageFetchError(ref.bucket, ref.key, f"timeout dopo {self.timeout_sec}s") from e
        except (ClientError, BotoCoreError) as e:
            raise StorageFetchError(ref.bucket, ref.key, str(e)) from e

        logger.info(f"[STORAGE] Scaricato s3://{ref.bucket}/{ref.key} ({len(content)} bytes)")
        return content
