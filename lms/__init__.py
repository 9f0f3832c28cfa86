"""Library App - Core Store Package

This package contains the store core of the library app:
- Periodic refresh scheduling (scheduler.py, clock.py, lifecycle.py)
- Partitioned snapshot loading (loader.py)
- Book catalogue store and upsert by ISBN (library.py)
- Announcement store and unread tracking (announcements.py)
- Data models (book.py, announcement.py)
"""
