"""
Exceptions raised by :py:mod:`ldap_adc` itself.

Errors reported by the directory server are not wrapped: they reach the caller
as the ``python-ldap`` exception (a subclass of :py:exc:`ldap.LDAPError`) that
the server or the fixture raised.
"""


class ADCError(Exception):
    """
    Base class for all :py:mod:`ldap_adc` errors.
    """


class ConfigurationError(ADCError):
    """
    The client configuration could not be loaded or did not validate.
    """


class ValidationError(ADCError, ValueError):
    """
    A lookup request named neither an id, a DN nor a filter.  Raised before
    any directory call is made.
    """


class SessionFailedError(ADCError):
    """
    The session could not be (re)bound and is now in the ``FAILED`` state.
    The bind error that put it there is chained as ``__cause__``.
    """


class PagingLimitExceeded(ADCError):
    """
    A paged search returned more pages than the configured ``max_pages``.

    Args:
        filterstr: the filter of the search that was aborted
        pages: the number of pages fetched before giving up

    """

    def __init__(self, filterstr: str, pages: int) -> None:
        self.filterstr = filterstr
        self.pages = pages
        super().__init__(
            f"paged search for '{filterstr}' exceeded {pages} pages; "
            "the server keeps returning a paging cookie"
        )


class GroupNotFoundError(ADCError, LookupError):
    """
    The group targeted by a membership operation does not exist.

    Args:
        group_id: the id we looked for

    """

    def __init__(self, group_id: str) -> None:
        self.group_id = group_id
        super().__init__(f"group '{group_id}' not found by ID")


class BatchResolutionError(ADCError):
    """
    Resolving one of the identifiers of a membership batch failed, so the
    whole batch was abandoned without writing anything.  The original error
    is chained as ``__cause__``.

    Args:
        member_id: the identifier whose lookup failed
        group_id: the group the batch targeted
        error: the original error

    """

    def __init__(self, member_id: str, group_id: str, error: BaseException) -> None:
        self.member_id = member_id
        self.group_id = group_id
        super().__init__(
            f"can't get account '{member_id}' for group '{group_id}': {error}"
        )


class IncompleteMembersError(ADCError):
    """
    The server returned only a range of a group's ``member`` values
    (``member;range=0-1499``), so we can't rewrite the member list without
    losing the rest.

    Args:
        dn: the DN of the group
        attribute: the ranged attribute name the server sent

    """

    def __init__(self, dn: str, attribute: str) -> None:
        self.dn = dn
        self.attribute = attribute
        super().__init__(
            f"group '{dn}' returned its members as '{attribute}'; "
            "refusing to rewrite a partial member list"
        )
