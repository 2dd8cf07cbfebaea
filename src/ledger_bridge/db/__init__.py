"""SQLite persistence for local order records."""
