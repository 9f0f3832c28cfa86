import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from config import settings
from lms.announcement import ANNOUNCEMENTS_TABLE, Announcement, format_timestamp, utcnow
from lms.book import BOOKS_TABLE, Book
from lms.deletion_request import DELETION_REQUESTS_TABLE, BookDeletionRequest, DeletionStatus
from lms.errors import ConnectivityError, RemoteStoreError, WriteError
from lms.loader import Partition
from lms.services.http_client import OptimizedHTTPClient

logger = logging.getLogger(__name__)


class SupabaseStore:
    """Remote store backed by a hosted Supabase project (PostgREST over HTTP)"""

    def __init__(self, url: Optional[str] = None, api_key: Optional[str] = None,
                 timeout: Optional[float] = None, retries: int = 2,
                 client: Optional[OptimizedHTTPClient] = None,
                 now: Optional[Callable[[], datetime]] = None):
        self.url = (url or settings.supabase_url).rstrip("/")
        self.api_key = api_key or settings.supabase_key
        self.retries = max(1, retries)
        self._now = now or utcnow

        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        self._http = client or OptimizedHTTPClient(
            base_url=f"{self.url}/rest/v1", headers=headers, timeout=timeout
        )

    # ------------------------- Reads ------------------------- #
    async def test_connection(self) -> bool:
        """Fetch a single book row; any non-2xx answer means the store is unusable"""
        try:
            response = await self._http.get(f"/{BOOKS_TABLE}", params={"select": "*", "limit": "1"})
        except httpx.TransportError as e:
            raise ConnectivityError(f"Supabase'e ulaşılamıyor: {e}") from e
        if response.is_success:
            return True
        logger.warning(f"Supabase bağlantı testi başarısız: HTTP {response.status_code}")
        return False

    async def fetch_partition(self, kind: Partition) -> List[Any]:
        table, params, decode = self._partition_query(Partition(kind))
        try:
            response = await self._http.get_with_retry(f"/{table}", retries=self.retries, params=params)
        except httpx.TransportError as e:
            raise ConnectivityError(f"{kind.value} bölümü alınamadı: {e}") from e
        self._raise_for_status(response, error_cls=RemoteStoreError)
        rows = self._json(response)
        if not isinstance(rows, list):
            raise RemoteStoreError(f"{kind.value} bölümü için beklenmeyen yanıt biçimi")
        try:
            return [decode(row) for row in rows]
        except (KeyError, TypeError, ValueError) as e:
            raise RemoteStoreError(f"{kind.value} bölümü çözümlenemedi: {e}") from e

    def _partition_query(self, kind: Partition) -> Tuple[str, Dict[str, str], Callable[[Dict[str, Any]], Any]]:
        if kind is Partition.BOOKS:
            return BOOKS_TABLE, {"select": "*"}, Book.from_row

        now = format_timestamp(self._now())
        if kind is Partition.ACTIVE:
            params = {
                "select": "*",
                "is_active": "eq.true",
                "is_archived": "eq.false",
                "start_date": f"lte.{now}",
                "expiry_date": f"gt.{now}",
                "order": "created_at.desc",
            }
        elif kind is Partition.SCHEDULED:
            params = {
                "select": "*",
                "is_active": "eq.true",
                "is_archived": "eq.false",
                "start_date": f"gt.{now}",
                "order": "start_date.asc",
            }
        else:
            params = {"select": "*", "is_archived": "eq.true", "order": "last_modified.desc"}
        return ANNOUNCEMENTS_TABLE, params, Announcement.from_row

    async def fetch_deletion_requests(self, status: Optional[DeletionStatus] = None) -> List[BookDeletionRequest]:
        params = {"select": "*", "order": "requestDate.desc"}
        if status is not None:
            params["status"] = f"eq.{DeletionStatus(status).value}"
        try:
            response = await self._http.get_with_retry(
                f"/{DELETION_REQUESTS_TABLE}", retries=self.retries, params=params
            )
        except httpx.TransportError as e:
            raise ConnectivityError(f"Silme talepleri alınamadı: {e}") from e
        self._raise_for_status(response, error_cls=RemoteStoreError)
        rows = self._json(response)
        if not isinstance(rows, list):
            raise RemoteStoreError("Silme talepleri için beklenmeyen yanıt biçimi")
        try:
            return [BookDeletionRequest.from_row(row) for row in rows]
        except (KeyError, TypeError, ValueError) as e:
            raise RemoteStoreError(f"Silme talepleri çözümlenemedi: {e}") from e

    # ------------------------- Writes ------------------------- #
    async def insert(self, record):
        response = await self._write("POST", f"/{record.TABLE}", json=record.to_row())
        rows = self._json(response)
        return self._decode_written(record, rows, response) if rows else record

    async def update(self, record):
        row = record.to_row()
        row.pop("id", None)
        response = await self._write("PATCH", f"/{record.TABLE}", params={"id": f"eq.{record.id}"}, json=row)
        rows = self._json(response)
        if not rows:
            raise WriteError(f"{record.TABLE} kaydı bulunamadı: {record.id}", status_code=response.status_code)
        return self._decode_written(record, rows, response)

    async def delete(self, record) -> None:
        await self._write("DELETE", f"/{record.TABLE}", params={"id": f"eq.{record.id}"})

    async def _write(self, method: str, path: str, **kwargs) -> httpx.Response:
        headers = {"Prefer": "return=representation"}
        try:
            response = await self._http.request(method, path, headers=headers, **kwargs)
        except httpx.TransportError as e:
            raise ConnectivityError(f"{method} {path} gönderilemedi: {e}") from e
        self._raise_for_status(response, error_cls=WriteError)
        return response

    # ------------------------- Helpers ------------------------- #
    @staticmethod
    def _decode_written(record, rows: Any, response: httpx.Response):
        # Yazma kalıcı olmuş olabilir; bozuk yanıt yine de yazma hatası sayılır
        try:
            return type(record).from_row(rows[0])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise WriteError(
                f"{record.TABLE} yazma yanıtı çözümlenemedi: {e}", status_code=response.status_code
            ) from e

    @staticmethod
    def _raise_for_status(response: httpx.Response, error_cls=RemoteStoreError) -> None:
        if response.is_success:
            return
        detail = response.text[:200]
        raise error_cls(
            f"{response.request.method} {response.request.url.path} -> HTTP {response.status_code}: {detail}",
            status_code=response.status_code,
        )

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        if not response.content:
            return []
        try:
            return response.json()
        except ValueError as e:
            raise RemoteStoreError(f"Geçersiz JSON yanıtı: {e}") from e

    async def close(self) -> None:
        await self._http.close()
