from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from lms.errors import ValidationError

BOOKS_TABLE = "Books"


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Book:
    """Katalogdaki tek bir kitap kaydı. Doğal anahtar ISBN'dir, `id` vekil anahtardır."""

    isbn: str
    title: str
    author: List[str] = field(default_factory=list)
    total_copies: int = 1
    available_copies: Optional[int] = None
    id: str = field(default_factory=_new_id)
    genre: str = "Uncategorized"
    publication_date: str = ""
    description: Optional[str] = None
    shelf_location: Optional[str] = None
    date_added: Optional[str] = None
    publisher: Optional[str] = None
    image_link: Optional[str] = None
    add_id: Optional[int] = None

    TABLE = BOOKS_TABLE

    def __post_init__(self) -> None:
        # Yeni alınan stok: aksi belirtilmedikçe tüm kopyalar rafta
        if self.available_copies is None:
            self.available_copies = self.total_copies
        if isinstance(self.author, str):
            self.author = [self.author] if self.author else []

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {', '.join(self.author)} (ISBN: {self.isbn})"

    def validate(self) -> None:
        """Kayıt değişmezlerini kontrol et; ihlalde ValidationError yükselt."""
        if not self.isbn or not self.isbn.strip():
            raise ValidationError("ISBN boş olamaz.")
        if self.total_copies < 0 or self.available_copies < 0:
            raise ValidationError(f"{self.isbn}: kopya sayıları negatif olamaz.")
        if self.available_copies > self.total_copies:
            raise ValidationError(
                f"{self.isbn}: mevcut kopya ({self.available_copies}) toplamı ({self.total_copies}) aşamaz."
            )

    def to_row(self) -> Dict[str, Any]:
        """Uzak depodaki `Books` tablosunun sütun adlarıyla sözlük."""
        return {
            "id": self.id,
            "title": self.title,
            "author": list(self.author),
            "genre": self.genre,
            "publicationDate": self.publication_date,
            "totalCopies": self.total_copies,
            "availableCopies": self.available_copies,
            "ISBN": self.isbn,
            "Description": self.description,
            "shelfLocation": self.shelf_location,
            "dateAdded": self.date_added,
            "publisher": self.publisher,
            "imageLink": self.image_link,
            "addID": self.add_id,
        }

    @staticmethod
    def from_row(data: Dict[str, Any]) -> "Book":
        # SQLite'tan gelen JSON dize yazar alanını listeye normalleştir
        authors = data.get("author")
        if isinstance(authors, str):
            try:
                authors = json.loads(authors)
            except ValueError:
                authors = [authors] if authors else []
        if isinstance(authors, str):
            authors = [authors]

        total = int(data.get("totalCopies") or 0)
        available = data.get("availableCopies")
        return Book(
            id=str(data["id"]) if data.get("id") is not None else _new_id(),
            isbn=data.get("ISBN") or "",
            title=data.get("title") or "",
            author=list(authors or []),
            genre=data.get("genre") or "Uncategorized",
            publication_date=data.get("publicationDate") or "",
            total_copies=total,
            available_copies=int(available) if available is not None else total,
            description=data.get("Description"),
            shelf_location=data.get("shelfLocation"),
            date_added=data.get("dateAdded"),
            publisher=data.get("publisher"),
            image_link=data.get("imageLink"),
            add_id=data.get("addID"),
        )
