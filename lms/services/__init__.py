"""Library App - Services Package

This package contains the remote store backends:
- Remote store protocol and backend factory
- Supabase (PostgREST) store
- Local SQLite store
- HTTP client abstraction
"""
