"""SQLite persistence for attempt history."""
