"""Importer adapter implementations."""
