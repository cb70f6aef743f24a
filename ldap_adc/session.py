"""
Session management: binding lazily, and recovering once from a dropped
connection.

Every directory call the client makes goes through
:py:meth:`SessionManager.execute`.  If the call fails because the connection
went away (:py:exc:`ldap.SERVER_DOWN` or :py:exc:`ldap.CONNECT_ERROR`), the
manager unbinds, binds again with the configured account and re-issues the
call exactly once.  Any other error, and a second failure of the re-issued
call, reaches the caller unchanged.

The session moves through these states::

    UNBOUND -> BINDING -> BOUND
    BOUND -> REBINDING -> BOUND | FAILED
    BINDING -> FAILED

``FAILED`` is terminal for :py:meth:`SessionManager.execute`; only an explicit
:py:meth:`SessionManager.bind` can bring the session back.
"""

from __future__ import annotations

import enum
import threading
from typing import TYPE_CHECKING, Callable, TypeVar

import ldap

from .exceptions import SessionFailedError
from .logging import logger

if TYPE_CHECKING:
    from .config import BindAccount
    from .directory import DirectoryCapability

T = TypeVar("T")

#: Errors that mean the connection is gone and a rebind may help
TRANSIENT_ERRORS = (ldap.SERVER_DOWN, ldap.CONNECT_ERROR)  # type: ignore[attr-defined]


class SessionState(enum.Enum):
    UNBOUND = "unbound"
    BINDING = "binding"
    BOUND = "bound"
    REBINDING = "rebinding"
    FAILED = "failed"


class SessionManager:
    """
    Owns the one directory session a client uses, and runs operations on it.

    The session may be shared by several threads.  Binds are serialized on a
    lock, and each successful bind increments :py:attr:`generation`: when
    several threads see the same dead connection, the first one to get the
    lock rebinds and the others notice the new generation and just retry.

    Args:
        directory: the directory to talk to
        account: the account to bind as

    """

    def __init__(self, directory: DirectoryCapability, account: BindAccount) -> None:
        self.directory: DirectoryCapability = directory
        self.account: BindAccount = account
        self.state: SessionState = SessionState.UNBOUND
        #: incremented on every successful bind
        self.generation: int = 0
        self._failure: Exception | None = None
        self._lock = threading.Lock()

    def _bind(self, state: SessionState) -> None:
        self.state = state
        logger.debug(
            "ldap_adc.session.bind dn=%s state=%s", self.account.dn, state.value
        )
        try:
            self.directory.bind(self.account.dn, self.account.password.get_secret_value())
        except ldap.LDAPError as exc:  # type: ignore[attr-defined]
            self.state = SessionState.FAILED
            self._failure = exc
            raise
        self._failure = None
        self.state = SessionState.BOUND
        self.generation += 1

    def _failed(self) -> SessionFailedError:
        return SessionFailedError(
            f"session for '{self.account.dn}' failed: {self._failure}"
        )

    def bind(self) -> None:
        """
        Bind now, whatever state the session is in.  This is the only way out
        of the ``FAILED`` state.

        Raises:
            ldap.LDAPError: the bind failed; the session is now ``FAILED``

        """
        with self._lock:
            self._bind(SessionState.BINDING)

    def _ensure_bound(self) -> int:
        with self._lock:
            if self.state is SessionState.FAILED:
                raise self._failed() from self._failure
            if self.state is SessionState.UNBOUND:
                self._bind(SessionState.BINDING)
            return self.generation

    def _rebind(self, generation: int) -> None:
        with self._lock:
            if self.state is SessionState.FAILED:
                raise self._failed() from self._failure
            if self.generation != generation:
                # someone else already rebound after the failure we saw
                return
            self.state = SessionState.REBINDING
            try:
                self.directory.unbind()
            except ldap.LDAPError as exc:  # type: ignore[attr-defined]
                logger.warning(
                    "ldap_adc.session.unbind.failed dn=%s error=%s", self.account.dn, exc
                )
            self._bind(SessionState.REBINDING)

    def execute(
        self, operation: Callable[[DirectoryCapability], T], description: str = ""
    ) -> T:
        """
        Run ``operation`` against our directory, binding first if we haven't
        yet.

        Args:
            operation: called with our :py:class:`DirectoryCapability`; its
                return value is returned unchanged
            description: what the operation does, for log messages

        Raises:
            SessionFailedError: the session is ``FAILED``
            ldap.LDAPError: the operation failed, the re-issued operation
                failed, or the rebind failed

        Returns:
            Whatever ``operation`` returned.

        """
        generation = self._ensure_bound()
        try:
            return operation(self.directory)
        except TRANSIENT_ERRORS as exc:
            logger.warning(
                "ldap_adc.session.retry operation=%s error=%s", description, exc
            )
            self._rebind(generation)
        return operation(self.directory)

    def unbind(self) -> None:
        """
        Close the session.  The next :py:meth:`execute` binds again.
        """
        with self._lock:
            if self.state is SessionState.UNBOUND:
                return
            self.state = SessionState.UNBOUND
            self.directory.unbind()
