import os
import json
from typing import List, Any, Dict
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

# Environment variable to control CLI output mode
# İzin verilen değerler: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _authors(book: Any) -> str:
    return ", ".join(getattr(book, "author", []) or [])


def print_books(books: List[Any]) -> None:
    """Kitap listesini mevcut çıktı moduna göre yazdır.
    - plain: 'ISBN - Title by Author (available/total)' satırları, veya 'No books in library.'
    - json: JSON dizisi
    - rich: Rich tablosu
    """
    mode = get_output_mode()

    if not books:
        print("No books in library.")
        return

    if mode == "json":
        payload = [
            {
                "id": b.id,
                "isbn": b.isbn,
                "title": b.title,
                "author": list(b.author),
                "total_copies": b.total_copies,
                "available_copies": b.available_copies,
                "shelf_location": b.shelf_location,
            }
            for b in books
        ]
        print(json.dumps(payload, ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("ISBN", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("Copies", justify="right")
        table.add_column("Shelf", style="dim")
        for b in books:
            table.add_row(
                b.isbn, b.title, _authors(b), f"{b.available_copies}/{b.total_copies}", b.shelf_location or "-"
            )
        _console.print(table)
    else:
        for b in books:
            print(f"{b.isbn} - {b.title} by {_authors(b)} ({b.available_copies}/{b.total_copies})")


def print_announcements(sections: Dict[str, List[Any]]) -> None:
    """Duyuruları bölüm bölüm yazdır (active/scheduled/archived)."""
    mode = get_output_mode()

    if not any(sections.values()):
        print("No announcements.")
        return

    if mode == "json":
        payload = {name: [a.to_row() for a in items] for name, items in sections.items()}
        print(json.dumps(payload, ensure_ascii=False))
    elif mode == "rich":
        for name, items in sections.items():
            table = Table(title=f"📢 {name.title()}", header_style="bold cyan")
            table.add_column("Title", style="white")
            table.add_column("Type", style="magenta")
            table.add_column("Starts")
            table.add_column("Expires")
            for a in items:
                table.add_row(a.title, a.type.value, a.start_date.strftime("%Y-%m-%d %H:%M"),
                              a.expiry_date.strftime("%Y-%m-%d %H:%M"))
            _console.print(table)
    else:
        for name, items in sections.items():
            print(f"[{name}]")
            for a in items:
                print(f"  {a.id} - {a.title} ({a.type.value})")


def print_status(status: Dict[str, Any]) -> None:
    """Depo durumunu yazdır.
    - plain: 'anahtar: değer' satırları
    - json: JSON nesnesi
    - rich: Panel
    """
    mode = get_output_mode()

    if mode == "json":
        print(json.dumps(status, ensure_ascii=False, default=str))
    elif mode == "rich":
        content = "\n".join(f"[bold]{key}:[/] {value}" for key, value in status.items())
        _console.print(Panel.fit(content, title="📊 Status", border_style="blue"))
    else:
        for key, value in status.items():
            print(f"{key}: {value}")


def print_deletion_requests(requests: List[Any]) -> None:
    """Silme taleplerini yazdır.
    - plain: 'ID - N book(s) [status] reason' satırları, veya 'No deletion requests.'
    """
    mode = get_output_mode()

    if not requests:
        print("No deletion requests.")
        return

    if mode == "json":
        print(json.dumps([r.to_row() for r in requests], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="🗑️ Deletion Requests", header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Books", justify="right")
        table.add_column("Status")
        table.add_column("Requested by", style="dim")
        table.add_column("Reason", style="white")
        for r in requests:
            table.add_row(r.id, str(len(r.book_ids)), r.status.value, r.requested_by or "-", r.reason or "-")
        _console.print(table)
    else:
        for r in requests:
            line = f"{r.id} - {len(r.book_ids)} book(s) [{r.status.value}] {r.reason}".rstrip()
            if r.admin_response:
                line += f" (response: {r.admin_response})"
            print(line)
