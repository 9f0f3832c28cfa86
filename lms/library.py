"""Kitap kataloğu deposu ve ISBN'ye göre ekle-veya-birleştir yazma yolu."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional

from lms.book import Book
from lms.clock import Clock
from lms.deletion_request import BookDeletionRequest, DeletionStatus
from lms.errors import LibraryError, ValidationError
from lms.loader import Loader, Partition
from lms.scheduler import RefreshScheduler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UpsertResult:
    """`upsert()` sonucu. Başarısızlıkta `book_id` None'dır ve `error` doludur."""

    is_new: bool
    book_id: Optional[str]
    error: Optional[LibraryError] = None

    @property
    def ok(self) -> bool:
        return self.book_id is not None


class UpsertCoordinator:
    """Aynı ISBN'li kitapları çoğaltmak yerine kopya sayılarını birleştirir.

    Arama, `Loader` tarafından en son yayınlanan anlık görüntü üzerinde yapılır;
    bu görüntü o an için eski olabilir. Yeniden yükleme çağıranın işidir.
    """

    def __init__(self, store, loader: Loader) -> None:
        self._store = store
        self._loader = loader

    def find_by_isbn(self, isbn: str) -> Optional[Book]:
        """Büyük/küçük harfe duyarlı tam eşleşme; birden çok kayıt varsa ilki kazanır."""
        matches = [book for book in self._loader.snapshot.get(Partition.BOOKS) if book.isbn == isbn]
        if len(matches) > 1:
            logger.warning(f"ISBN {isbn} için {len(matches)} kayıt var; ilki ({matches[0].id}) kullanılıyor")
        return matches[0] if matches else None

    @staticmethod
    def validate(candidate: Book) -> None:
        candidate.validate()
        if candidate.total_copies < 1:
            raise ValidationError(f"{candidate.isbn}: eklenecek kopya sayısı pozitif olmalı.")

    async def upsert(self, candidate: Book) -> UpsertResult:
        try:
            self.validate(candidate)
        except ValidationError as e:
            logger.warning(f"Geçersiz aday kayıt reddedildi: {e}")
            return UpsertResult(is_new=False, book_id=None, error=e)

        existing = self.find_by_isbn(candidate.isbn)
        if existing is not None:
            # Yeni gelen kopyaların hepsi rafta kabul edilir
            updated = replace(
                existing,
                total_copies=existing.total_copies + candidate.total_copies,
                available_copies=existing.available_copies + candidate.total_copies,
            )
            try:
                await self._store.update(updated)
            except LibraryError as e:
                logger.error(f"Mevcut kitap güncellenemedi ({existing.isbn}): {e}")
                return UpsertResult(is_new=False, book_id=None, error=e)
            logger.info(
                f"Kopyalar birleştirildi: {existing.isbn} -> {updated.total_copies} toplam, "
                f"{updated.available_copies} mevcut"
            )
            return UpsertResult(is_new=False, book_id=existing.id)

        try:
            await self._store.insert(candidate)
        except LibraryError as e:
            logger.error(f"Yeni kitap eklenemedi ({candidate.isbn}): {e}")
            return UpsertResult(is_new=False, book_id=None, error=e)
        logger.info(f"Yeni kitap eklendi: {candidate.title} ({candidate.isbn})")
        return UpsertResult(is_new=True, book_id=candidate.id)


class BookStore:
    """Kitap anlık görüntüsü, periyodik yenileme ve katalog yazma işlemleri."""

    def __init__(
        self,
        store,
        *,
        interval: Optional[float] = None,
        background_interval: Optional[float] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.store = store
        self.loader = Loader(store, [Partition.BOOKS], name="books")
        self.scheduler = RefreshScheduler(
            self.loader, interval=interval, background_interval=background_interval, clock=clock
        )
        self.coordinator = UpsertCoordinator(store, self.loader)
        self.deletion_requests: List[BookDeletionRequest] = []
        self.deletion_history: List[BookDeletionRequest] = []

    @property
    def books(self) -> List[Book]:
        return list(self.loader.snapshot.get(Partition.BOOKS))

    @property
    def state(self):
        return self.loader.state

    async def refresh(self) -> bool:
        return await self.loader.refresh()

    def find_by_isbn(self, isbn: str) -> Optional[Book]:
        return self.coordinator.find_by_isbn(isbn)

    def find_by_id(self, book_id: str) -> Optional[Book]:
        return next((book for book in self.books if book.id == book_id), None)

    # ------------------------- Yazma ------------------------- #
    async def add_or_update(self, candidate: Book) -> UpsertResult:
        """ISBN'ye göre ekle veya kopyaları birleştir, ardından anlık görüntüyü yeniden yükle."""
        result = await self.coordinator.upsert(candidate)
        await self.loader.reload()
        return result

    async def import_books(self, candidates: Iterable[Book]) -> List[UpsertResult]:
        """Adayları sırayla işle; her biri bir öncekinin yeniden yüklenmiş görüntüsünü görür."""
        return [await self.add_or_update(candidate) for candidate in candidates]

    async def update_book(self, book: Book) -> Book:
        book.validate()
        updated = await self.store.update(book)
        await self.loader.reload()
        return updated

    async def delete_book(self, book: Book) -> None:
        await self.store.delete(book)
        await self.loader.reload()

    async def update_shelf_location(self, book_id: str, shelf_location: str) -> bool:
        book = self.find_by_id(book_id)
        if book is None:
            return False
        try:
            await self.update_book(replace(book, shelf_location=shelf_location))
        except LibraryError as e:
            logger.error(f"Raf konumu güncellenemedi ({book.isbn}): {e}")
            return False
        return True

    # ------------------------- Silme talepleri ------------------------- #
    async def request_deletion(
        self, book_ids: Iterable[str], requested_by: str = "", reason: str = ""
    ) -> BookDeletionRequest:
        """Kitapların silinmesi için yönetici onayı bekleyen bir talep oluştur."""
        book_ids = list(book_ids)
        if not book_ids:
            raise ValidationError("Silme talebi en az bir kitap içermeli.")
        request = BookDeletionRequest(book_ids=book_ids, requested_by=requested_by, reason=reason)
        created = await self.store.insert(request)
        logger.info(f"Silme talebi oluşturuldu: {request.id} ({len(book_ids)} kitap)")
        await self.fetch_deletion_requests()
        return created

    async def fetch_deletion_requests(self) -> List[BookDeletionRequest]:
        """Bekleyen talepleri yükle; hata olursa önceki liste korunur."""
        try:
            self.deletion_requests = await self.store.fetch_deletion_requests(DeletionStatus.PENDING)
        except LibraryError as e:
            logger.error(f"Silme talepleri alınamadı: {e}")
        return list(self.deletion_requests)

    async def fetch_deletion_history(self) -> List[BookDeletionRequest]:
        """Onaylanmış ve reddedilmiş talepler."""
        try:
            requests = await self.store.fetch_deletion_requests()
        except LibraryError as e:
            logger.error(f"Silme talebi geçmişi alınamadı: {e}")
            return list(self.deletion_history)
        self.deletion_history = [r for r in requests if not r.is_pending]
        return list(self.deletion_history)

    def find_deletion_request(self, request_id: str) -> Optional[BookDeletionRequest]:
        return next((r for r in self.deletion_requests if r.id == request_id), None)

    async def approve_deletion_request(self, request: BookDeletionRequest) -> bool:
        """Talebi onayla ve listelenen kitapları sil.

        Anlık görüntüde bulunmayan kimlikler atlanır. Bir silme başarısız
        olursa talep onaylanmış kalır ve False döner.
        """
        if not request.is_pending:
            logger.warning(f"Silme talebi zaten {request.status.value}: {request.id}")
            return False
        try:
            await self.store.update(replace(request, status=DeletionStatus.APPROVED, admin_response=None))
            for book_id in request.book_ids:
                book = self.find_by_id(book_id)
                if book is None:
                    logger.warning(f"Silinecek kitap bulunamadı: {book_id}")
                    continue
                await self.store.delete(book)
        except LibraryError as e:
            logger.error(f"Silme talebi onaylanamadı ({request.id}): {e}")
            return False
        finally:
            await self.loader.reload()
            await self.fetch_deletion_requests()
        logger.info(f"Silme talebi onaylandı: {request.id}")
        return True

    async def reject_deletion_request(self, request: BookDeletionRequest, reason: str) -> bool:
        """Talebi reddet; gerekçe `admin_response` alanına yazılır."""
        if not request.is_pending:
            logger.warning(f"Silme talebi zaten {request.status.value}: {request.id}")
            return False
        try:
            await self.store.update(replace(request, status=DeletionStatus.REJECTED, admin_response=reason))
        except LibraryError as e:
            logger.error(f"Silme talebi reddedilemedi ({request.id}): {e}")
            return False
        await self.fetch_deletion_requests()
        logger.info(f"Silme talebi reddedildi: {request.id}")
        return True

    # ------------------------- Sorgular ------------------------- #
    def recently_added(self, limit: int = 10) -> List[Book]:
        """Önce en yüksek `add_id`, yoksa en yeni `date_added`."""

        def _key(book: Book):
            return (book.add_id is not None, book.add_id or 0, book.date_added or "")

        return sorted(self.books, key=_key, reverse=True)[:limit]

    def books_without_shelf_location(self) -> List[Book]:
        return [book for book in self.books if not (book.shelf_location or "").strip()]
