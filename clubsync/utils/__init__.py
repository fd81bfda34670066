"""Shared helpers for the ClubSync application."""
