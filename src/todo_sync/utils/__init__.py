"""Shared helpers for todo_sync."""
