from __future__ import annotations

import inspect
import threading
from dataclasses import dataclass
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable

import ldap

from .db import CallHistory, ObjectStore
from .directory import DirectoryCapability, Entry, PagingState, SearchSpec
from .live import encode_values, to_entries
from .logging import logger

if TYPE_CHECKING:
    from .types import AttributeValues

#: Errors after which a real connection would be gone
CONNECTION_ERRORS = (ldap.SERVER_DOWN, ldap.CONNECT_ERROR)  # type: ignore[attr-defined]


@dataclass
class Failure:
    """
    One configured failure for :py:class:`FakeDirectory`.  See
    :py:meth:`FakeDirectory.fail`.
    """

    api_name: str  #: the method to fail
    exc: Exception  #: what to raise
    match: str | None = None  #: only fail calls whose target contains this
    times: int | None = None  #: fail this many times, then stop (``None``: always)

    def matches(self, target: str) -> bool:
        if self.times is not None and self.times <= 0:
            return False
        return self.match is None or self.match.lower() in target.lower()


def record_call(func: Callable[..., Any]) -> Callable[..., Any]:
    """
    Save a record of the call to ``func`` so that our tests can inspect it
    later.  Calls are serialized on the directory's lock, like requests on a
    single LDAP connection.
    """

    @wraps(func)
    def inner(*args, **kwargs) -> Any:
        sig = inspect.signature(func)
        bound = sig.bind(*args, **kwargs)
        bound.apply_defaults()
        args_dict = dict(bound.arguments)
        self = args_dict.pop("self")
        with self._lock:
            self.calls.register(func.__name__, args_dict)
            logger.debug("record_call api=%s, arguments=%s", func.__name__, args_dict)
            return func(*args, **kwargs)

    return inner


def handle_failure(func: Callable[..., Any]) -> Callable[..., Any]:
    """
    Check to see whether a failure has been configured with
    :py:meth:`FakeDirectory.fail` for this call to ``func``, and raise it
    instead of running ``func`` if so.
    """

    @wraps(func)
    def inner(self, target, *args, **kwargs):
        key = target.filterstr if isinstance(target, SearchSpec) else str(target)
        for failure in self.failures:
            if failure.api_name == func.__name__ and failure.matches(key):
                if failure.times is not None:
                    failure.times -= 1
                logger.debug(
                    "handle_failure.found method=%s target=%s exc=%r",
                    func.__name__,
                    key,
                    failure.exc,
                )
                if isinstance(failure.exc, CONNECTION_ERRORS):
                    self.bound_dn = None
                raise failure.exc
        return func(self, target, *args, **kwargs)

    return inner


def needs_bind(func):
    @wraps(func)
    def inner(self, target, *args, **kwargs):
        if not self.bound_dn:
            raise ldap.INSUFFICIENT_ACCESS(  # type: ignore[attr-defined]
                {
                    "msgtype": 105,
                    "msgid": 1,
                    "result": 50,
                    "desc": "Insufficient access",
                    "ctrls": [],
                    "info": (
                        f"Insufficient '{func.__name__}' privilege for the "
                        f"entry '{target}'\n"
                    ),
                }
            )
        return func(self, target, *args, **kwargs)

    return inner


class FakeDirectory(DirectoryCapability):
    """
    A :py:class:`ldap_adc.directory.DirectoryCapability` that answers from an
    in-memory :py:class:`ldap_adc.db.ObjectStore`.  Use it in tests in place of
    :py:class:`ldap_adc.live.LDAPDirectory`.

    * :py:meth:`bind` checks the password against the entry's ``userPassword``
    * every other operation except :py:meth:`unbind` needs a successful bind
    * paged searches use the offset of the next entry as the cookie
    * every call is recorded in :py:attr:`calls`
    * failures can be configured with :py:meth:`fail`

    Args:
        store: the object store to answer from; it is used as is, not copied

    Keyword Args:
        paging_supported: if ``False``, ignore paging requests and return
            every result with no paging state, like a server that doesn't
            support the paged results control

    """

    def __init__(self, store: ObjectStore | None = None, paging_supported: bool = True):
        self.store: ObjectStore = store if store is not None else ObjectStore()
        self.paging_supported: bool = paging_supported
        self.calls: CallHistory = CallHistory()  #: The method call history
        self.failures: list[Failure] = []  #: configured failures, see :py:meth:`fail`
        self.bound_dn: str | None = (
            None  #: Set by :py:meth:`bind` to the dn of the user after success
        )
        self._lock = threading.RLock()

    def fail(
        self,
        api_name: str,
        exc: Exception,
        match: str | None = None,
        times: int | None = None,
    ) -> None:
        """
        Make calls to the method ``api_name`` raise ``exc``.

        Raising :py:exc:`ldap.SERVER_DOWN` or :py:exc:`ldap.CONNECT_ERROR` also
        drops our bind, as a real server would.

        Example:
            Make the next search that mentions ``user1`` fail as if the
            connection had dropped::

                directory.fail(
                    'search',
                    ldap.SERVER_DOWN({'desc': "Can't contact LDAP server"}),
                    match='user1',
                    times=1,
                )

        Args:
            api_name: one of ``bind``, ``search``, ``add``, ``modify``, ``modify_dn``
            exc: the exception to raise

        Keyword Args:
            match: only fail calls whose target contains this string
                (case-insensitively).  The target is the filter for
                ``search``, and the DN for everything else.
            times: only fail this many times

        """
        self.failures.append(Failure(api_name, exc, match=match, times=times))

    @record_call
    @handle_failure
    def bind(self, dn: str, password: str) -> None:
        """
        Perform a bind.  This will look in the object store for an object with
        dn of ``dn`` and compare ``password`` to the ``userPassword`` attribute
        for that object.

        Raises:
            ldap.INVALID_CREDENTIALS: ``dn`` did not match ``password``

        """
        if self.store.exists(dn, validate=False):
            passwords = self.store.objects[dn].get("userPassword", [])
            if password and password in passwords:
                self.bound_dn = dn
                return
        raise ldap.INVALID_CREDENTIALS(  # type: ignore[attr-defined]
            {
                "msgtype": 97,
                "msgid": 2,
                "result": 49,
                "desc": "Invalid credentials",
                "ctrls": [],
            }
        )

    @record_call
    @handle_failure
    @needs_bind
    def search(
        self, spec: SearchSpec, paging: PagingState | None = None
    ) -> tuple[list[Entry], PagingState | None]:
        results = self.store.search_subtree(
            spec.base_dn, spec.filterstr, attrlist=list(spec.attributes)
        )
        if paging is None or not self.paging_supported:
            return to_entries(results), None
        offset = int(paging.cookie or b"0")
        end = offset + paging.page_size
        cookie = str(end).encode("utf-8") if end < len(results) else b""
        return to_entries(results[offset:end]), paging.next(cookie)

    @record_call
    @handle_failure
    @needs_bind
    def add(self, dn: str, attributes: AttributeValues) -> None:
        self.store.create(
            dn, [(name, encode_values(values)) for name, values in attributes.items()]
        )

    @record_call
    @handle_failure
    @needs_bind
    def modify(self, dn: str, replacements: AttributeValues) -> None:
        self.store.update(
            dn,
            [
                (ldap.MOD_REPLACE, name, encode_values(values))  # type: ignore[attr-defined]
                for name, values in replacements.items()
            ],
        )

    @record_call
    @handle_failure
    @needs_bind
    def modify_dn(self, dn: str, new_rdn: str, delete_old_rdn: bool = True) -> None:
        self.store.rename(dn, new_rdn, delold=delete_old_rdn)

    @record_call
    def unbind(self) -> None:
        """
        Unbind from the server.

        This sets our :py:attr:`bound_dn` to ``None``.
        """
        self.bound_dn = None
