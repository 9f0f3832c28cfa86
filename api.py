import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from config import settings
from lms.announcement import Announcement, AnnouncementType, utcnow
from lms.announcements import AnnouncementStore
from lms.book import Book
from lms.deletion_request import BookDeletionRequest, DeletionStatus
from lms.errors import ConnectivityError, LibraryError, RemoteStoreError, ValidationError
from lms.library import BookStore
from lms.lifecycle import LifecycleNotifier, LifecyclePhase
from lms.loader import RefreshState
from lms.services.remote_store import create_remote_store

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Başlangıçta depoyu aç ve yenileme zamanlayıcılarını başlat
    store = create_remote_store(settings)
    notifier = LifecycleNotifier()
    books = BookStore(store)
    announcements = AnnouncementStore(store)
    for scheduler in (books.scheduler, announcements.scheduler):
        scheduler.attach(notifier)
    app.state.store = store
    app.state.notifier = notifier
    app.state.books = books
    app.state.announcements = announcements
    logger.info(f"API başlatılıyor (depo: {settings.store_backend})")

    await books.scheduler.start()
    await announcements.scheduler.start()
    try:
        yield
    finally:
        # Kapanışta zamanlayıcıları durdur ve bağlantıları kapat
        await books.scheduler.stop()
        await announcements.scheduler.stop()
        await store.close()


app = FastAPI(title="Kütüphane Yönetim API'si", lifespan=lifespan)

# 1KB'den büyük yanıtlar için GZip sıkıştırmasını etkinleştir
app.add_middleware(GZipMiddleware, minimum_size=1000)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Güvenlik ---
api_key_header = APIKeyHeader(name="X-API-Key")


def get_api_key(api_key: str = Security(api_key_header)):
    """API anahtarını doğrulamak için bağımlılık."""
    if api_key == settings.api_key:
        return api_key
    else:
        raise HTTPException(
            status_code=403,
            detail="Kimlik bilgileri doğrulanamadı",
        )


def get_books(request: Request) -> BookStore:
    return request.app.state.books


def get_announcements(request: Request) -> AnnouncementStore:
    return request.app.state.announcements


def _http_error(error: LibraryError) -> HTTPException:
    """Depo hatalarını HTTP durum kodlarına eşle."""
    if isinstance(error, ValidationError):
        return HTTPException(status_code=422, detail=str(error))
    if isinstance(error, (ConnectivityError, RemoteStoreError)):
        return HTTPException(status_code=502, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


# --- Modeller ---
class BookModel(BaseModel):
    id: str
    isbn: str
    title: str
    author: List[str]
    genre: str
    total_copies: int
    available_copies: int
    shelf_location: Optional[str] = None
    date_added: Optional[str] = None

    @classmethod
    def from_book(cls, book: Book) -> "BookModel":
        return cls(
            id=book.id,
            isbn=book.isbn,
            title=book.title,
            author=list(book.author),
            genre=book.genre,
            total_copies=book.total_copies,
            available_copies=book.available_copies,
            shelf_location=book.shelf_location,
            date_added=book.date_added,
        )


class BookCreateModel(BaseModel):
    isbn: str = Field(..., description="Doğal anahtar; büyük/küçük harfe duyarlı")
    title: str
    author: List[str] = Field(default_factory=list)
    total_copies: int = Field(default=1, description="Eklenecek kopya sayısı")
    genre: str = "Uncategorized"
    publication_date: str = ""
    shelf_location: Optional[str] = None


class UpsertResponse(BaseModel):
    is_new: bool
    id: str
    book: Optional[BookModel] = None


class AnnouncementModel(BaseModel):
    id: str
    title: str
    content: str
    type: AnnouncementType
    start_date: datetime
    expiry_date: datetime
    created_at: datetime
    is_active: bool
    is_archived: bool
    last_modified: datetime

    @classmethod
    def from_announcement(cls, a: Announcement) -> "AnnouncementModel":
        return cls(
            id=a.id,
            title=a.title,
            content=a.content,
            type=a.type,
            start_date=a.start_date,
            expiry_date=a.expiry_date,
            created_at=a.created_at,
            is_active=a.is_active,
            is_archived=a.is_archived,
            last_modified=a.last_modified,
        )


class AnnouncementCreateModel(BaseModel):
    title: str
    content: str
    type: AnnouncementType = AnnouncementType.ALL
    start_date: datetime
    expiry_date: datetime


class AnnouncementListModel(BaseModel):
    active: List[AnnouncementModel]
    scheduled: List[AnnouncementModel]
    archived: List[AnnouncementModel]


class DeletionRequestModel(BaseModel):
    id: str
    book_ids: List[str]
    requested_by: str
    reason: str
    request_date: datetime
    status: DeletionStatus
    admin_response: Optional[str] = None

    @classmethod
    def from_request(cls, r: BookDeletionRequest) -> "DeletionRequestModel":
        return cls(
            id=r.id,
            book_ids=list(r.book_ids),
            requested_by=r.requested_by,
            reason=r.reason,
            request_date=r.request_date,
            status=r.status,
            admin_response=r.admin_response,
        )


class DeletionRequestCreateModel(BaseModel):
    book_ids: List[str] = Field(..., min_length=1)
    requested_by: str = ""
    reason: str = ""


class DeletionRejectModel(BaseModel):
    reason: str


def _state_payload(state: RefreshState) -> Dict[str, object]:
    return {
        "is_refreshing": state.is_refreshing,
        "is_loading": state.is_loading,
        "last_error": str(state.last_error) if state.last_error else None,
        "last_success_at": state.last_success_at,
        "failures": state.failures,
    }


# --- Sağlık Kontrolü ---
@app.get("/health")
async def health(request: Request):
    """Anlık görüntülerin durumunu ve son yenileme hatalarını döndürür."""
    books: BookStore = request.app.state.books
    announcements: AnnouncementStore = request.app.state.announcements
    healthy = books.state.last_error is None and announcements.state.last_error is None
    return {
        "status": "healthy" if healthy else "degraded",
        "timestamp": utcnow().isoformat(),
        "backend": settings.store_backend,
        "phase": request.app.state.notifier.phase.value,
        "total_books": len(books.books),
        "books": _state_payload(books.state),
        "announcements": _state_payload(announcements.state),
    }


# --- Kitaplar ---
@app.get("/books", response_model=List[BookModel])
async def list_books(
    books: BookStore = Depends(get_books),
    recent: Optional[int] = Query(None, ge=1, description="Son eklenen N kitap"),
    without_shelf: bool = Query(False, description="Yalnızca raf konumu olmayanlar"),
):
    if recent:
        selected = books.recently_added(recent)
    elif without_shelf:
        selected = books.books_without_shelf_location()
    else:
        selected = books.books
    return [BookModel.from_book(b) for b in selected]


@app.get("/books/{isbn}", response_model=BookModel)
async def get_book(isbn: str, books: BookStore = Depends(get_books)):
    book = books.find_by_isbn(isbn)
    if not book:
        raise HTTPException(status_code=404, detail="Kitap bulunamadı.")
    return BookModel.from_book(book)


@app.post("/books", response_model=UpsertResponse, dependencies=[Depends(get_api_key)])
async def upsert_book(payload: BookCreateModel, books: BookStore = Depends(get_books)):
    """ISBN'e göre kitap ekle veya mevcut kaydın kopya sayılarını artır."""
    candidate = Book(
        isbn=payload.isbn,
        title=payload.title,
        author=payload.author,
        total_copies=payload.total_copies,
        genre=payload.genre,
        publication_date=payload.publication_date,
        shelf_location=payload.shelf_location,
    )
    result = await books.add_or_update(candidate)
    if not result.ok:
        raise _http_error(result.error)
    book = books.find_by_id(result.book_id)
    return UpsertResponse(
        is_new=result.is_new, id=result.book_id, book=BookModel.from_book(book) if book else None
    )


# --- Duyurular ---
@app.get("/announcements", response_model=AnnouncementListModel)
async def list_announcements(
    audience: Optional[AnnouncementType] = Query(None, description="Yalnızca bu kitleye yönelik etkin duyurular"),
    announcements: AnnouncementStore = Depends(get_announcements),
):
    active = announcements.for_audience(audience) if audience else announcements.active
    return AnnouncementListModel(
        active=[AnnouncementModel.from_announcement(a) for a in active],
        scheduled=[AnnouncementModel.from_announcement(a) for a in announcements.scheduled],
        archived=[AnnouncementModel.from_announcement(a) for a in announcements.archived],
    )


@app.post("/announcements", response_model=AnnouncementModel, dependencies=[Depends(get_api_key)])
async def create_announcement(
    payload: AnnouncementCreateModel, announcements: AnnouncementStore = Depends(get_announcements)
):
    try:
        created = await announcements.create(
            payload.title, payload.content, payload.type, payload.start_date, payload.expiry_date
        )
    except LibraryError as e:
        raise _http_error(e)
    return AnnouncementModel.from_announcement(created)


async def _change_archive_state(announcement_id: str, announcements: AnnouncementStore, archive: bool):
    announcement = announcements.find(announcement_id)
    if not announcement:
        raise HTTPException(status_code=404, detail="Duyuru bulunamadı.")
    try:
        if archive:
            updated = await announcements.archive(announcement)
        else:
            updated = await announcements.restore(announcement)
    except LibraryError as e:
        raise _http_error(e)
    return AnnouncementModel.from_announcement(updated)


@app.post(
    "/announcements/{announcement_id}/archive",
    response_model=AnnouncementModel,
    dependencies=[Depends(get_api_key)],
)
async def archive_announcement(
    announcement_id: str, announcements: AnnouncementStore = Depends(get_announcements)
):
    return await _change_archive_state(announcement_id, announcements, archive=True)


@app.post(
    "/announcements/{announcement_id}/restore",
    response_model=AnnouncementModel,
    dependencies=[Depends(get_api_key)],
)
async def restore_announcement(
    announcement_id: str, announcements: AnnouncementStore = Depends(get_announcements)
):
    return await _change_archive_state(announcement_id, announcements, archive=False)


# --- Silme Talepleri ---
@app.get("/deletion-requests", response_model=List[DeletionRequestModel])
async def list_deletion_requests(
    books: BookStore = Depends(get_books),
    history: bool = Query(False, description="Onaylanmış ve reddedilmiş talepler"),
):
    requests = await (books.fetch_deletion_history() if history else books.fetch_deletion_requests())
    return [DeletionRequestModel.from_request(r) for r in requests]


@app.post("/deletion-requests", response_model=DeletionRequestModel, dependencies=[Depends(get_api_key)])
async def create_deletion_request(payload: DeletionRequestCreateModel, books: BookStore = Depends(get_books)):
    unknown = [book_id for book_id in payload.book_ids if books.find_by_id(book_id) is None]
    if unknown:
        raise HTTPException(status_code=404, detail=f"Kitap bulunamadı: {', '.join(unknown)}")
    try:
        created = await books.request_deletion(payload.book_ids, payload.requested_by, payload.reason)
    except LibraryError as e:
        raise _http_error(e)
    return DeletionRequestModel.from_request(created)


async def _pending_request(request_id: str, books: BookStore) -> BookDeletionRequest:
    await books.fetch_deletion_requests()
    request = books.find_deletion_request(request_id)
    if request is None:
        raise HTTPException(status_code=404, detail="Bekleyen silme talebi bulunamadı.")
    return request


@app.post("/deletion-requests/{request_id}/approve", dependencies=[Depends(get_api_key)])
async def approve_deletion_request(request_id: str, books: BookStore = Depends(get_books)):
    request = await _pending_request(request_id, books)
    if not await books.approve_deletion_request(request):
        raise HTTPException(status_code=502, detail="Silme talebi onaylanamadı.")
    return {"id": request_id, "status": DeletionStatus.APPROVED.value, "total_books": len(books.books)}


@app.post("/deletion-requests/{request_id}/reject", dependencies=[Depends(get_api_key)])
async def reject_deletion_request(
    request_id: str, payload: DeletionRejectModel, books: BookStore = Depends(get_books)
):
    request = await _pending_request(request_id, books)
    if not await books.reject_deletion_request(request, payload.reason):
        raise HTTPException(status_code=502, detail="Silme talebi reddedilemedi.")
    return {"id": request_id, "status": DeletionStatus.REJECTED.value, "admin_response": payload.reason}


# --- Yaşam Döngüsü ---
@app.post("/lifecycle/{phase}", dependencies=[Depends(get_api_key)])
async def change_phase(phase: LifecyclePhase, request: Request):
    """İstemcinin ön plan/arka plan geçişini zamanlayıcılara ilet."""
    changed = await request.app.state.notifier.publish(phase)
    return {
        "phase": phase.value,
        "changed": changed,
        "books": request.app.state.books.scheduler.state.name,
        "announcements": request.app.state.announcements.scheduler.state.name,
    }
