from __future__ import annotations

from typing import TYPE_CHECKING

from .directory import Entry, PagingState
from .exceptions import PagingLimitExceeded
from .logging import logger

if TYPE_CHECKING:
    from .directory import SearchSpec
    from .session import SessionManager


class PaginatedSearchAggregator:
    """
    Runs a search as a sequence of paged requests (RFC 2696) and returns all
    the entries, in the order the server returned them.

    Args:
        session: every page is fetched through this, so each page gets the
            session's rebind-and-retry handling

    Keyword Args:
        max_pages: give up with :py:exc:`PagingLimitExceeded` if the server
            is still handing out cookies after this many pages.  ``None``
            means keep going for as long as the server does.

    """

    def __init__(self, session: SessionManager, max_pages: int | None = None) -> None:
        self.session = session
        self.max_pages = max_pages

    def list_all(self, spec: SearchSpec, page_size: int) -> list[Entry]:
        """
        Return every entry that matches ``spec``.

        We stop when the server returns an empty cookie, or returns no paging
        state at all (a server that ignores the paged results control sends
        everything in the first response).

        Args:
            spec: the search to run
            page_size: how many entries to ask for per page

        Raises:
            PagingLimitExceeded: we fetched ``max_pages`` pages and the server
                still had more
            ldap.LDAPError: fetching a page failed

        Returns:
            All matching entries.

        """
        entries: list[Entry] = []
        paging: PagingState | None = PagingState(page_size)
        pages = 0
        while paging is not None:
            if self.max_pages is not None and pages >= self.max_pages:
                raise PagingLimitExceeded(spec.filterstr, pages)
            state = paging
            page, paging = self.session.execute(
                lambda directory: directory.search(spec, paging=state),
                description=f"search {spec.filterstr}",
            )
            pages += 1
            entries.extend(page)
            logger.debug(
                "ldap_adc.paging.page base=%s filter=%s page=%d entries=%d",
                spec.base_dn,
                spec.filterstr,
                pages,
                len(page),
            )
            if paging is not None and paging.done:
                paging = None
        return entries
