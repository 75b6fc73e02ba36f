"""SQLite persistence for tracking tokens, task runs, and pipeline steps."""
