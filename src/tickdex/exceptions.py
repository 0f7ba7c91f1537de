"""
Tickdex Exception Hierarchy

Structured exceptions for clear error handling across CLI, API, and MCP
consumers.  Each exception type maps to a specific failure mode so that
callers can handle errors precisely without parsing message strings.

Usage::

    from tickdex.exceptions import TickdexError, StoreError

    try:
        client = Tickdex(instruments=catalog)
    except StoreError:
        print("Catalog store could not be built.")
    except TickdexError as exc:
        print(f"Tickdex error: {exc}")
"""


class TickdexError(Exception):
    """Base exception for all Tickdex errors."""


class ConfigError(TickdexError, ValueError):
    """Configuration is invalid or incomplete (e.g. weights that do not sum to 1).

    Inherits from ``ValueError`` so callers that already catch
    ``ValueError`` from ``TickdexConfig.validate()`` keep working.
    """


class StoreError(TickdexError):
    """The catalog store could not be opened, created, or populated.

    Fatal: a store that raised this must not be queried.
    """


class IndexNotFoundError(TickdexError, FileNotFoundError):
    """No catalog store exists at the expected path and no instruments were given.

    Inherits from ``FileNotFoundError`` for intuitive exception handling.
    """


class SearchError(TickdexError):
    """The underlying store failed while executing a query.

    Raised by store backends; the search engine absorbs it and returns an
    empty result (or ``None`` for lookups).
    """


class CatalogLoadError(TickdexError):
    """A required catalog source file is missing or unreadable."""
