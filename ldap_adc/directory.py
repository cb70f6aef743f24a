"""
The directory capability: the six operations the rest of :py:mod:`ldap_adc`
needs from an LDAP server, and the value types they exchange.

Two implementations ship with the package:

* :py:class:`ldap_adc.live.LDAPDirectory` talks to a real server through
  ``python-ldap``
* :py:class:`ldap_adc.fixture.FakeDirectory` answers from an in-memory
  :py:class:`ldap_adc.db.ObjectStore`

Both raise ``python-ldap`` exceptions for directory errors, so callers can
treat them interchangeably.  The implementation is chosen by whoever builds
the :py:class:`ldap_adc.client.Client`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import ldap

if TYPE_CHECKING:
    from .types import AttributeValues


@dataclass(frozen=True)
class SearchSpec:
    """
    An immutable search request.  Scope is always the whole subtree under
    :py:attr:`base_dn` and aliases are never dereferenced.

    If :py:attr:`attributes` is empty the server returns its default set.
    """

    base_dn: str  #: where to start the search
    filterstr: str  #: an LDAP filter string; values must already be escaped
    attributes: tuple[str, ...] = ()  #: the attributes to return
    time_limit: int = 0  #: advisory server-side time limit, in seconds (0: none)
    scope: int = field(default=ldap.SCOPE_SUBTREE, init=False)  # type: ignore[attr-defined]
    deref: int = field(default=ldap.DEREF_NEVER, init=False)  # type: ignore[attr-defined]


@dataclass(frozen=True)
class PagingState:
    """
    The simple paged results control (RFC 2696) state for one request.

    The first request carries an empty :py:attr:`cookie`; each response
    carries the cookie to send with the next request, and an empty cookie in
    a response means there are no more pages.
    """

    page_size: int
    cookie: bytes = b""

    @property
    def done(self) -> bool:
        return not self.cookie

    def next(self, cookie: bytes | None) -> PagingState:
        """Return the state for the request following one answered with ``cookie``."""
        return PagingState(self.page_size, cookie or b"")


@dataclass(frozen=True)
class Entry:
    """
    A read-only snapshot of one directory entry.  :py:attr:`attributes` keeps
    the order in which the server returned the attributes.
    """

    dn: str
    attributes: dict[str, list[str]] = field(default_factory=dict)

    def get_attribute_values(self, name: str) -> list[str]:
        """
        Return all values of attribute ``name``, matching the name
        case-insensitively, or an empty list if the entry doesn't have it.
        """
        wanted = name.lower()
        for attr, values in self.attributes.items():
            if attr.lower() == wanted:
                return list(values)
        return []

    def get_attribute_value(self, name: str) -> str:
        """
        Return the first value of attribute ``name``, or ``""`` if the entry
        doesn't have it.
        """
        values = self.get_attribute_values(name)
        return values[0] if values else ""


class DirectoryCapability(ABC):
    """
    The operations we need from a directory session.

    Implementations must be safe to call from several threads at once: the
    membership reconciler issues its point lookups concurrently over one
    session and does no locking of its own.
    """

    @abstractmethod
    def bind(self, dn: str, password: str) -> None:
        """
        Authenticate the session as ``dn``, (re)connecting first if needed.

        Raises:
            ldap.INVALID_CREDENTIALS: wrong ``dn`` or ``password``
            ldap.SERVER_DOWN: the server can't be reached

        """

    @abstractmethod
    def search(
        self, spec: SearchSpec, paging: PagingState | None = None
    ) -> tuple[list[Entry], PagingState | None]:
        """
        Run one search request.

        Args:
            spec: the search to run

        Keyword Args:
            paging: if given, request one page of results with this state

        Returns:
            The entries found and the paging state returned by the server, or
            ``None`` if the response carried no paging control.

        """

    @abstractmethod
    def add(self, dn: str, attributes: AttributeValues) -> None:
        """
        Create the entry ``dn`` with ``attributes``.

        Raises:
            ldap.ALREADY_EXISTS: ``dn`` already exists

        """

    @abstractmethod
    def modify(self, dn: str, replacements: AttributeValues) -> None:
        """
        Replace the values of each attribute named in ``replacements`` on
        entry ``dn``.  An empty value list removes the attribute.

        Raises:
            ldap.NO_SUCH_OBJECT: ``dn`` does not exist

        """

    @abstractmethod
    def modify_dn(self, dn: str, new_rdn: str, delete_old_rdn: bool = True) -> None:
        """
        Give entry ``dn`` the new RDN ``new_rdn`` in the same container.

        Raises:
            ldap.NO_SUCH_OBJECT: ``dn`` does not exist

        """

    @abstractmethod
    def unbind(self) -> None:
        """
        Close the session.  Closing a session that isn't open does nothing.
        """
