"""Capture-ingestion HTTP server."""
