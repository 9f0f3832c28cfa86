import csv
import re
from typing import Iterable, List, Optional, Tuple

from lms.book import Book
from lms.errors import ValidationError

# CSV içe aktarma sütun sırası: başlık satırı atlanır
CSV_COLUMNS = ("title", "author", "genre", "isbn", "publication_date", "total_copies")


class ISBNValidator:
    """Simple ISBN validator supporting ISBN-10 and ISBN-13 checksums."""

    @staticmethod
    def normalize_isbn(raw: str) -> str:
        if raw is None:
            return ""
        s = re.sub(r"[^0-9Xx]", "", raw)
        return s.upper()

    @staticmethod
    def is_valid_isbn(isbn: str) -> bool:
        if not isbn:
            return False
        s = ISBNValidator.normalize_isbn(isbn)
        if len(s) == 10:
            # ISBN-10: 1..10 ağırlıklı kontrol toplamı
            total = 0
            for i, ch in enumerate(s[:-1], 1):
                if not ch.isdigit():
                    return False
                total += i * int(ch)
            check = s[-1]
            if check == 'X':
                check_val = 10
            elif check.isdigit():
                check_val = int(check)
            else:
                return False
            return (total + 10 * check_val) % 11 == 0
        elif len(s) == 13 and s.isdigit():
            # ISBN-13 kontrol toplamı
            total = 0
            for i, ch in enumerate(s[:-1]):
                factor = 1 if i % 2 == 0 else 3
                total += factor * int(ch)
            check_val = (10 - (total % 10)) % 10
            return check_val == int(s[-1])
        return False


class TextValidator:
    """Basic text validations for catalogue fields."""

    @staticmethod
    def validate_title(title: Optional[str]) -> bool:
        if title is None:
            return False
        t = title.strip()
        return bool(t) and any(c.isalpha() for c in t)

    @staticmethod
    def split_authors(raw: Optional[str]) -> List[str]:
        """'A; B' biçimindeki yazar alanını listeye ayır."""
        if not raw:
            return []
        return [part.strip() for part in raw.split(";") if part.strip()]


def parse_copies(raw: Optional[str], default: int = 1) -> int:
    raw = (raw or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"Geçersiz kopya sayısı: {raw!r}")


def book_from_csv_row(columns: List[str], line_number: int) -> Book:
    """Tek bir CSV satırını aday kitap kaydına dönüştür.

    ISBN olduğu gibi korunur (yalnızca boşluklar kırpılır); eşleştirme
    büyük/küçük harfe duyarlıdır.
    """
    if len(columns) < len(CSV_COLUMNS):
        raise ValidationError(
            f"Satır {line_number}: {len(columns)} sütun var, {len(CSV_COLUMNS)} gerekli"
        )
    title, author, genre, isbn, publication_date, copies = (c.strip() for c in columns[:len(CSV_COLUMNS)])
    if not TextValidator.validate_title(title):
        raise ValidationError(f"Satır {line_number}: geçersiz başlık")
    total = parse_copies(copies)
    return Book(
        isbn=isbn,
        title=title,
        author=TextValidator.split_authors(author),
        genre=genre or "Uncategorized",
        publication_date=publication_date,
        total_copies=total,
        available_copies=max(total, 0),
    )


def read_books_csv(lines: Iterable[str]) -> Tuple[List[Book], List[str]]:
    """CSV içeriğini ayrıştır; geçerli adayları ve satır hatalarını döndür."""
    books: List[Book] = []
    errors: List[str] = []
    reader = csv.reader(lines)
    next(reader, None)
    for line_number, columns in enumerate(reader, start=2):
        if not any(c.strip() for c in columns):
            continue
        try:
            books.append(book_from_csv_row(columns, line_number))
        except ValidationError as e:
            errors.append(str(e))
    return books, errors
