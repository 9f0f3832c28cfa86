import json
from unittest.mock import MagicMock

import pytest
from typer.testing import CliRunner

import main
from conftest import FakeRemoteStore
from config import settings
from lms.services.sqlite_store import SQLiteStore
from main import app
from utils.ui_helpers import OUTPUT_MODE_ENV

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_env(db_file, tmp_path, monkeypatch):
    # Her komut aynı test veritabanını kullanır
    monkeypatch.setattr(main, "create_remote_store", lambda config: SQLiteStore(db_file=db_file))
    monkeypatch.setattr(settings, "seen_announcements_file", str(tmp_path / "seen.json"))
    monkeypatch.delenv(OUTPUT_MODE_ENV, raising=False)


def test_books_empty():
    result = runner.invoke(app, ["books"])
    assert result.exit_code == 0
    assert "No books in library." in result.output


def test_add_new_book_then_merge_copies():
    first = runner.invoke(app, ["add", "9780441013593", "--title", "Dune", "--author", "Frank Herbert"])
    assert first.exit_code == 0
    assert "Successfully added: Dune (9780441013593)" in first.output

    second = runner.invoke(app, ["add", "9780441013593", "--title", "Dune", "--copies", "2"])
    assert second.exit_code == 0
    assert "Merged 2 copies into existing book" in second.output
    assert "(total: 3)" in second.output

    listing = runner.invoke(app, ["books"])
    assert "9780441013593 - Dune by Frank Herbert (3/3)" in listing.output


def test_add_rejects_non_positive_copies():
    result = runner.invoke(app, ["add", "123", "--title", "Nothing", "--copies", "0"])
    assert result.exit_code == 1
    assert "Error:" in result.output


def test_books_json_output():
    runner.invoke(app, ["add", "111", "--title", "First", "--author", "A; B", "--shelf", "A-1"])

    result = runner.invoke(app, ["-o", "json", "books"])

    assert result.exit_code == 0
    payload = json.loads(result.output.strip().splitlines()[-1])
    assert payload[0]["isbn"] == "111"
    assert payload[0]["author"] == ["A", "B"]
    assert payload[0]["shelf_location"] == "A-1"


def test_books_lookup_by_isbn():
    runner.invoke(app, ["add", "111", "--title", "First"])

    found = runner.invoke(app, ["books", "--isbn", "111"])
    missing = runner.invoke(app, ["books", "--isbn", "999"])

    assert "111 - First" in found.output
    assert missing.exit_code == 1
    assert "Book with ISBN 999 not found." in missing.output


def test_import_csv_merges_and_reports(tmp_path):
    csv_file = tmp_path / "books.csv"
    csv_file.write_text(
        "title,author,genre,isbn,publication_date,copies\n"
        "Dune,Frank Herbert,Science Fiction,9780441013593,1965,2\n"
        "Dune,Frank Herbert,Science Fiction,9780441013593,1965,1\n"
        "Bad,row\n",
        encoding="utf-8",
    )

    result = runner.invoke(app, ["import-csv", str(csv_file)])

    assert result.exit_code == 0
    assert "Skipped:" in result.output
    assert "Import finished: 1 added, 1 merged, 1 failed" in result.output
    listing = runner.invoke(app, ["books"])
    assert "(3/3)" in listing.output


def test_import_csv_missing_file(tmp_path):
    result = runner.invoke(app, ["import-csv", str(tmp_path / "missing.csv")])
    assert result.exit_code == 1
    assert "Could not read file" in result.output


def test_status_reports_unreachable_store(monkeypatch):
    store = FakeRemoteStore()
    store.connected = False
    monkeypatch.setattr(main, "create_remote_store", lambda config: store)

    result = runner.invoke(app, ["status"])

    assert result.exit_code == 1
    assert "connected: False" in result.output
    assert store.closed


def test_status_json_output():
    result = runner.invoke(app, ["-o", "json", "status"])

    assert result.exit_code == 0
    status = json.loads(result.output.strip().splitlines()[-1])
    assert status["connected"] is True
    assert status["books"] == 0


def test_announce_and_unread_flow():
    created = runner.invoke(app, ["announce", "Closed on Monday", "Holiday", "--type", "librarian"])
    assert created.exit_code == 0
    assert "Announcement created: Closed on Monday" in created.output

    unread = runner.invoke(app, ["unread"])
    assert "Unread announcements: 1" in unread.output

    marked = runner.invoke(app, ["unread", "--mark-seen"])
    assert "Marked all as seen." in marked.output

    after = runner.invoke(app, ["unread"])
    assert "Unread announcements: 0" in after.output


def test_member_announcements_hidden_from_librarians():
    runner.invoke(app, ["announce", "Book club", "Thursday", "--type", "member"])

    result = runner.invoke(app, ["unread", "--audience", "librarian"])

    assert "Unread announcements: 0" in result.output


def test_announcements_listing():
    runner.invoke(app, ["announce", "Now", "Live now"])
    runner.invoke(app, ["announce", "Later", "Starts tomorrow", "--starts-in", "24"])

    result = runner.invoke(app, ["announcements"])

    assert result.exit_code == 0
    assert "[active]" in result.output
    assert "Now (all)" in result.output
    assert "Later (all)" in result.output


def test_watch_prints_snapshots():
    runner.invoke(app, ["add", "111", "--title", "First"])

    result = runner.invoke(app, ["watch", "--duration", "0.05", "--interval", "10"])

    assert result.exit_code == 0
    assert "books=1" in result.output
    assert "active=0" in result.output


def test_serve_runs_uvicorn(monkeypatch):
    import uvicorn

    run_mock = MagicMock()
    monkeypatch.setattr(uvicorn, "run", run_mock)

    result = runner.invoke(app, ["serve", "--port", "8123"])

    assert result.exit_code == 0
    assert "Starting API on http://" in result.output
    run_mock.assert_called_once()
    assert run_mock.call_args.args[0] == "api:app"
    assert run_mock.call_args.kwargs["port"] == 8123


def _pending_request_id():
    listing = runner.invoke(app, ["-o", "json", "deletion-requests"])
    return json.loads(listing.output.strip().splitlines()[-1])[0]["id"]


def test_deletion_request_approve_flow():
    runner.invoke(app, ["add", "111", "--title", "Worn out"])
    runner.invoke(app, ["add", "222", "--title", "Keeper"])

    requested = runner.invoke(app, ["request-deletion", "111", "--reason", "Torn pages", "--by", "lib"])
    assert requested.exit_code == 0
    assert "Deletion requested:" in requested.output
    assert "(1 book(s))" in requested.output

    request_id = _pending_request_id()
    approved = runner.invoke(app, ["approve-deletion", request_id])
    assert approved.exit_code == 0
    assert f"Request {request_id} approved." in approved.output

    listing = runner.invoke(app, ["books"])
    assert "111 - Worn out" not in listing.output
    assert "222 - Keeper" in listing.output
    assert "No deletion requests." in runner.invoke(app, ["deletion-requests"]).output
    history = runner.invoke(app, ["deletion-requests", "--history"])
    assert f"{request_id} - 1 book(s) [approved] Torn pages" in history.output


def test_deletion_request_reject_flow():
    runner.invoke(app, ["add", "111", "--title", "Keeper"])
    runner.invoke(app, ["request-deletion", "111"])
    request_id = _pending_request_id()

    rejected = runner.invoke(app, ["reject-deletion", request_id, "--reason", "Only copy"])
    assert rejected.exit_code == 0
    assert f"Request {request_id} rejected." in rejected.output

    assert "111 - Keeper" in runner.invoke(app, ["books"]).output
    history = runner.invoke(app, ["deletion-requests", "--history"])
    assert "[rejected]" in history.output
    assert "(response: Only copy)" in history.output

    again = runner.invoke(app, ["approve-deletion", request_id])
    assert again.exit_code == 1
    assert f"Pending deletion request {request_id} not found." in again.output


def test_request_deletion_unknown_isbn():
    result = runner.invoke(app, ["request-deletion", "999"])
    assert result.exit_code == 1
    assert "Book(s) not found: 999" in result.output
