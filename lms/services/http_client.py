import httpx
import asyncio
from typing import Optional, Dict
import logging

from config import settings

logger = logging.getLogger(__name__)


class OptimizedHTTPClient:
    """Bağlantı havuzu ve yeniden deneme mantığı ile optimize edilmiş HTTP istemcisi"""

    def __init__(self, base_url: str = "", headers: Optional[Dict[str, str]] = None,
                 timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        # Daha iyi performans için bağlantı limitleri
        limits = httpx.Limits(
            max_keepalive_connections=20,
            max_connections=100,
            keepalive_expiry=30.0
        )

        # Zaman aşımı yapılandırması
        total = timeout if timeout is not None else settings.supabase_timeout
        timeout_config = httpx.Timeout(
            timeout=total,
            connect=min(5.0, total),
        )

        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers or {},
            limits=limits,
            timeout=timeout_config,
            follow_redirects=True,
            transport=transport,
        )

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Bağlantı havuzu ile asenkron istek"""
        return await self._client.request(method, url, **kwargs)

    async def get(self, url: str, **kwargs) -> httpx.Response:
        return await self._client.get(url, **kwargs)

    async def get_with_retry(self, url: str, retries: int = 3, backoff: float = 0.5, **kwargs) -> httpx.Response:
        """Üstel geri çekilme yeniden deneme mantığı ile GET isteği.

        Son denemedeki bağlantı hatası çağırana iletilir.
        """
        for attempt in range(retries):
            try:
                return await self.get(url, **kwargs)
            except httpx.TransportError as e:
                if attempt == retries - 1:
                    raise
                wait_time = backoff * (2 ** attempt)
                logger.debug(f"GET {url} başarısız ({e}); {wait_time:.2f}s sonra yeniden denenecek")
                await asyncio.sleep(wait_time)
        raise RuntimeError("retries en az 1 olmalı")

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    async def close(self):
        """HTTP istemcisini kapat"""
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
