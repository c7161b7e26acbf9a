"""SQLite persistence, documents, cache backends and usage stores."""
