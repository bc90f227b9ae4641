"""
FastAPI REST API for the Book Heaven catalog.

This module provides:
- Public book listing
- Firebase-token authenticated create, read, update and delete of books
- Owner scoping of mutations by the caller's verified email
"""
