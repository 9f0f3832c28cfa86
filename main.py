import asyncio
import logging
from datetime import datetime, timedelta
from typing import List, Optional

import typer
from rich.console import Console

from config import settings
from lms.announcement import AnnouncementType, utcnow
from lms.announcements import AnnouncementStore, AnnouncementTracker
from lms.book import Book
from lms.errors import LibraryError, ValidationError
from lms.library import BookStore
from lms.lifecycle import LifecycleNotifier
from lms.loader import Snapshot
from lms.services.remote_store import create_remote_store
from utils.ui_helpers import (
    get_output_mode,
    print_announcements,
    print_books,
    print_deletion_requests,
    print_status,
    set_output_mode,
)
from utils.validators import ISBNValidator, TextValidator, read_books_csv

APP_NAME = "Kütüphane CLI"

console = Console()
logger = logging.getLogger(__name__)


def configure_logging(level: Optional[str] = None) -> None:
    """Kök günlükçüyü LOG_LEVEL ayarına göre bir kez yapılandır."""
    level_name = (level or settings.log_level or "WARNING").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _run(coro):
    return asyncio.run(coro)


def _exit_on(condition: bool) -> None:
    if condition:
        raise typer.Exit(code=1)


# --- Typer CLI Uygulaması ---
app = typer.Typer(help="Kütüphane CLI")


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Çıktı formatı: plain | json | rich (varsayılan: plain)",
    ),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Günlük düzeyi (DEBUG, INFO, ...)"),
):
    """CLI için genel seçenekler (ör. çıktı modu)."""
    if output:
        set_output_mode(output)
    configure_logging(log_level)


@app.command("status")
def cli_status():
    """Uzak depoya bağlanıp kitap ve duyuru anlık görüntülerinin durumunu göster."""

    async def _status():
        store = create_remote_store(settings)
        try:
            books = BookStore(store)
            announcements = AnnouncementStore(store)
            await books.refresh()
            await announcements.refresh()
            errors = [s.last_error for s in (books.state, announcements.state) if s.last_error]
            return {
                "backend": settings.store_backend,
                "connected": not errors,
                "books": len(books.books),
                "active_announcements": len(announcements.active),
                "scheduled_announcements": len(announcements.scheduled),
                "archived_announcements": len(announcements.archived),
                "last_error": str(errors[0]) if errors else None,
            }
        finally:
            await store.close()

    status = _run(_status())
    print_status(status)
    _exit_on(not status["connected"])


@app.command("books")
def cli_books(
    isbn: Optional[str] = typer.Option(None, "--isbn", help="Tek bir ISBN'i göster"),
    recent: int = typer.Option(0, "--recent", help="Son eklenen N kitabı göster"),
    without_shelf: bool = typer.Option(False, "--without-shelf", help="Raf konumu olmayan kitaplar"),
):
    """Katalogdaki kitapları listele."""

    async def _books():
        store = create_remote_store(settings)
        try:
            book_store = BookStore(store)
            await book_store.refresh()
            if book_store.state.last_error:
                return None, book_store.state.last_error
            if isbn:
                found = book_store.find_by_isbn(isbn)
                return ([found] if found else []), None
            if recent:
                return book_store.recently_added(recent), None
            if without_shelf:
                return book_store.books_without_shelf_location(), None
            return book_store.books, None
        finally:
            await store.close()

    books, error = _run(_books())
    if error:
        print(f"Error: {error}")
        raise typer.Exit(code=1)
    if isbn and not books:
        print(f"Book with ISBN {isbn} not found.")
        raise typer.Exit(code=1)
    print_books(books)


@app.command("announcements")
def cli_announcements():
    """Etkin, planlanmış ve arşivlenmiş duyuruları listele."""

    async def _announcements():
        store = create_remote_store(settings)
        try:
            ann_store = AnnouncementStore(store)
            await ann_store.refresh()
            return ann_store
        finally:
            await store.close()

    ann_store = _run(_announcements())
    if ann_store.state.last_error:
        print(f"Error: {ann_store.state.last_error}")
        raise typer.Exit(code=1)
    print_announcements(
        {"active": ann_store.active, "scheduled": ann_store.scheduled, "archived": ann_store.archived}
    )


@app.command("announce")
def cli_announce(
    title: str = typer.Argument(..., help="Başlık"),
    content: str = typer.Argument(..., help="İçerik"),
    audience: AnnouncementType = typer.Option(AnnouncementType.ALL, "--type", "-t", help="Hedef kitle"),
    days: int = typer.Option(7, "--days", help="Yayında kalacağı gün sayısı"),
    starts_in: int = typer.Option(0, "--starts-in", help="Yayının kaç saat sonra başlayacağı"),
):
    """Yeni bir duyuru oluştur."""

    async def _announce():
        store = create_remote_store(settings)
        try:
            start = utcnow() + timedelta(hours=starts_in)
            return await AnnouncementStore(store).create(
                title, content, audience, start, start + timedelta(days=days)
            )
        finally:
            await store.close()

    try:
        created = _run(_announce())
    except LibraryError as e:
        print(f"Error: {e}")
        raise typer.Exit(code=1)
    print(f"Announcement created: {created.title} ({created.id})")


@app.command("add")
def cli_add(
    isbn: str = typer.Argument(..., help="Kitabın ISBN'i"),
    title: str = typer.Option(..., "--title", help="Başlık"),
    author: Optional[str] = typer.Option(None, "--author", help="Yazarlar, ';' ile ayrılmış"),
    copies: int = typer.Option(1, "--copies", "-c", help="Eklenecek kopya sayısı"),
    genre: str = typer.Option("Uncategorized", "--genre", help="Tür"),
    shelf: Optional[str] = typer.Option(None, "--shelf", help="Raf konumu"),
):
    """Bir kitap ekle; aynı ISBN zaten varsa kopya sayılarını birleştir."""
    isbn = isbn.strip()
    if not ISBNValidator.is_valid_isbn(isbn):
        logger.warning(f"ISBN kontrol toplamı geçersiz: {isbn}")
    authors = TextValidator.split_authors(author)
    candidate = Book(
        isbn=isbn, title=title, author=authors, total_copies=copies, genre=genre, shelf_location=shelf
    )

    async def _add():
        store = create_remote_store(settings)
        try:
            book_store = BookStore(store)
            await book_store.refresh()
            if book_store.state.last_error:
                return None, book_store.state.last_error
            result = await book_store.add_or_update(candidate)
            return result, book_store.find_by_isbn(isbn)
        finally:
            await store.close()

    result, extra = _run(_add())
    if result is None:
        print(f"Error: {extra}")
        raise typer.Exit(code=1)
    if not result.ok:
        print(f"Error: {result.error}")
        raise typer.Exit(code=1)
    if result.is_new:
        print(f"Successfully added: {title} ({isbn})")
    else:
        total = extra.total_copies if extra else "?"
        print(f"Merged {copies} copies into existing book {result.book_id} (total: {total})")


@app.command("import-csv")
def cli_import_csv(file_path: str = typer.Argument(..., help="CSV dosyası: title,author,genre,isbn,publication_date,copies")):
    """Bir CSV dosyasından kitapları içe aktar (ISBN'e göre birleştirerek)."""
    try:
        with open(file_path, "r", encoding="utf-8", newline="") as f:
            candidates, errors = read_books_csv(f)
    except OSError as e:
        print(f"Could not read file: {e}")
        raise typer.Exit(code=1)

    for error in errors:
        print(f"Skipped: {error}")

    async def _import():
        store = create_remote_store(settings)
        try:
            book_store = BookStore(store)
            await book_store.refresh()
            if book_store.state.last_error:
                return None, book_store.state.last_error
            return await book_store.import_books(candidates), None
        finally:
            await store.close()

    results, error = _run(_import())
    if results is None:
        print(f"Error: {error}")
        raise typer.Exit(code=1)

    added = sum(1 for r in results if r.ok and r.is_new)
    merged = sum(1 for r in results if r.ok and not r.is_new)
    failed = len(results) - added - merged + len(errors)
    for candidate, result in zip(candidates, results):
        if not result.ok:
            print(f"Failed: {candidate.isbn} - {result.error}")
    print(f"Import finished: {added} added, {merged} merged, {failed} failed")
    _exit_on(failed > 0 and added + merged == 0)


@app.command("request-deletion")
def cli_request_deletion(
    isbns: List[str] = typer.Argument(..., help="Silinmesi istenen kitapların ISBN'leri"),
    reason: str = typer.Option("", "--reason", "-r", help="Talep gerekçesi"),
    requested_by: str = typer.Option("", "--by", help="Talep eden kütüphaneci"),
):
    """Kitapların silinmesi için yönetici onayı iste."""

    async def _request():
        store = create_remote_store(settings)
        try:
            book_store = BookStore(store)
            await book_store.refresh()
            if book_store.state.last_error:
                raise book_store.state.last_error
            missing = [isbn for isbn in isbns if book_store.find_by_isbn(isbn) is None]
            if missing:
                raise ValidationError(f"Book(s) not found: {', '.join(missing)}")
            book_ids = [book_store.find_by_isbn(isbn).id for isbn in isbns]
            return await book_store.request_deletion(book_ids, requested_by=requested_by, reason=reason)
        finally:
            await store.close()

    try:
        request = _run(_request())
    except LibraryError as e:
        print(f"Error: {e}")
        raise typer.Exit(code=1)
    print(f"Deletion requested: {request.id} ({len(request.book_ids)} book(s))")


@app.command("deletion-requests")
def cli_deletion_requests(
    history: bool = typer.Option(False, "--history", help="Onaylanmış ve reddedilmiş talepleri göster"),
):
    """Bekleyen silme taleplerini listele."""

    async def _list():
        store = create_remote_store(settings)
        try:
            book_store = BookStore(store)
            if history:
                return await book_store.fetch_deletion_history()
            return await book_store.fetch_deletion_requests()
        finally:
            await store.close()

    print_deletion_requests(_run(_list()))


def _decide_deletion(request_id: str, approve: bool, reason: str = "") -> None:
    async def _decide():
        store = create_remote_store(settings)
        try:
            book_store = BookStore(store)
            await book_store.refresh()
            await book_store.fetch_deletion_requests()
            request = book_store.find_deletion_request(request_id)
            if request is None:
                return None
            if approve:
                return await book_store.approve_deletion_request(request)
            return await book_store.reject_deletion_request(request, reason)
        finally:
            await store.close()

    decided = _run(_decide())
    if decided is None:
        print(f"Pending deletion request {request_id} not found.")
        raise typer.Exit(code=1)
    if not decided:
        print(f"Error: could not {'approve' if approve else 'reject'} request {request_id}.")
        raise typer.Exit(code=1)
    print(f"Request {request_id} {'approved' if approve else 'rejected'}.")


@app.command("approve-deletion")
def cli_approve_deletion(request_id: str = typer.Argument(..., help="Talep kimliği")):
    """Silme talebini onayla ve listelenen kitapları sil."""
    _decide_deletion(request_id, approve=True)


@app.command("reject-deletion")
def cli_reject_deletion(
    request_id: str = typer.Argument(..., help="Talep kimliği"),
    reason: str = typer.Option(..., "--reason", "-r", help="Ret gerekçesi"),
):
    """Silme talebini gerekçesiyle reddet."""
    _decide_deletion(request_id, approve=False, reason=reason)


@app.command("unread")
def cli_unread(
    audience: AnnouncementType = typer.Option(AnnouncementType.LIBRARIAN, "--audience", "-a", help="Hedef kitle"),
    mark_seen: bool = typer.Option(False, "--mark-seen", help="Tümünü okundu olarak işaretle"),
):
    """Okunmamış etkin duyuru sayısını göster."""

    async def _active():
        store = create_remote_store(settings)
        try:
            ann_store = AnnouncementStore(store)
            await ann_store.refresh()
            return ann_store
        finally:
            await store.close()

    ann_store = _run(_active())
    if ann_store.state.last_error:
        print(f"Error: {ann_store.state.last_error}")
        raise typer.Exit(code=1)

    tracker = AnnouncementTracker()
    unseen = tracker.unseen(ann_store.active, audience)
    if get_output_mode() == "json":
        print_status({"unread": len(unseen), "ids": [a.id for a in unseen]})
    else:
        print(f"Unread announcements: {len(unseen)}")
        for announcement in unseen:
            print(f"  {announcement.title}")
    if mark_seen and unseen:
        tracker.mark_all_seen(unseen)
        print("Marked all as seen.")


@app.command("watch")
def cli_watch(
    duration: float = typer.Option(0, "--duration", help="Çıkmadan önce izlenecek saniye (0 = Ctrl+C'ye kadar)"),
    interval: Optional[float] = typer.Option(None, "--interval", help="Yenileme aralığı (saniye)"),
):
    """Periyodik yenilemeyi çalıştır ve her yeni anlık görüntüyü yazdır."""

    def _report(name: str):
        def _on_snapshot(snapshot: Snapshot) -> None:
            counts = ", ".join(f"{p.value}={len(rows)}" for p, rows in snapshot.partitions.items())
            stamp = datetime.now().strftime("%H:%M:%S")
            console.print(f"[dim]{stamp}[/] [bold]{name}[/] {counts}")

        return _on_snapshot

    async def _watch():
        store = create_remote_store(settings)
        notifier = LifecycleNotifier()
        books = BookStore(store, interval=interval)
        announcements = AnnouncementStore(store, interval=interval)
        books.loader.subscribe(_report("books"))
        announcements.loader.subscribe(_report("announcements"))
        for scheduler in (books.scheduler, announcements.scheduler):
            scheduler.attach(notifier)
        try:
            await books.scheduler.start()
            await announcements.scheduler.start()
            if duration > 0:
                await asyncio.sleep(duration)
            else:
                await asyncio.Event().wait()
        finally:
            await books.scheduler.stop()
            await announcements.scheduler.stop()
            await store.close()

    try:
        _run(_watch())
    except KeyboardInterrupt:
        console.print("[green]Hoşçakalın![/]")


@app.command("serve")
def cli_serve(
    host: Optional[str] = typer.Option(None, "--host", help="Dinlenecek adres"),
    port: Optional[int] = typer.Option(None, "--port", help="Dinlenecek port"),
):
    """HTTP API'yi uvicorn ile başlat."""
    import uvicorn

    host = host or settings.api_host
    port = int(port or settings.api_port)
    print(f"Starting API on http://{host}:{port}/")
    uvicorn.run("api:app", host=host, port=port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    app()
