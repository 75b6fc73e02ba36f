"""Deployment and run-book tooling for the wikidata-filter dump pipeline."""

__version__ = "0.1.0"
