"""Resumable run-book: provision, checkout, build, fetch, filter."""
