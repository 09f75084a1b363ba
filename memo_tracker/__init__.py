"""Memo tracking service."""
