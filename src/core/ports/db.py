"""
Shared repository interfaces.

Component-specific storage needs live in each component's ports.py;
this module holds the site/event repositories used across components
and the storage error types every adapter raises.
"""

from __future__ import annotations

from typing import Protocol
from uuid import UUID

from src.core.entities import Event, Site

# -----------------------------------------------------------------------------
# Site Repository
# -----------------------------------------------------------------------------


class SiteRepoPort(Protocol):
    """Lookup and registration of tracked sites."""

    def get_site(self, site_id: UUID) -> Site | None:
        """Get a site by id, or None."""
        ...

    def save_site(self, site: Site) -> Site:
        """Insert or replace a site."""
        ...


# -----------------------------------------------------------------------------
# Event Repository
# -----------------------------------------------------------------------------


class EventRepoPort(Protocol):
    """
    Append-only event rows.

    Invariants:
    - I1: insert_event assigns a monotonically increasing id
    - I2: Rows are only changed afterwards by a pageleave merge
    """

    def insert_event(self, event: Event) -> Event:
        """Insert an event and return it with its id set."""
        ...


# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------


class StoreError(Exception):
    """Base class for storage errors."""


class RowNotFoundError(StoreError):
    """Raised when an update targets a row that does not exist."""

    def __init__(self, table: str, key: str) -> None:
        self.table = table
        self.key = key
        super().__init__(f"{table} row not found: {key}")
