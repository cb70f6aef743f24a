from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any

import ldap
from ldap.controls import SimplePagedResultsControl

from .directory import DirectoryCapability, Entry, PagingState, SearchSpec
from .logging import logger

if TYPE_CHECKING:
    from .config import Config
    from .types import AddModList, AttributeValues, LDAPSearchResult, ModList


def encode_values(values: Any) -> list[bytes]:
    """
    Turn a value or list of values into the ``list[bytes]`` that
    ``python-ldap`` wants.  ``str`` values are encoded as UTF-8, ``bytes``
    values are passed through untouched.
    """
    if isinstance(values, (str, bytes)):
        values = [values]
    return [v if isinstance(v, bytes) else str(v).encode("utf-8") for v in values]


def decode_values(values: list[bytes]) -> list[str]:
    """
    Decode attribute values returned by ``python-ldap``.  Binary values that
    aren't UTF-8 (``objectSid``, ``objectGUID`` ...) come back with their
    undecodable bytes backslash-escaped rather than raising.
    """
    return [v.decode("utf-8", errors="backslashreplace") for v in values]


def to_entries(rdata: LDAPSearchResult) -> list[Entry]:
    """
    Convert ``python-ldap`` search results to :py:class:`Entry` objects.

    Active Directory appends search continuation references to the results;
    those have a ``None`` DN or a non-dict payload and are dropped.
    """
    entries: list[Entry] = []
    for dn, attrs in rdata:
        if dn is None or not isinstance(attrs, dict):
            continue
        entries.append(
            Entry(dn, {name: decode_values(values) for name, values in attrs.items()})
        )
    return entries


def paged_control(serverctrls: list[Any] | None) -> SimplePagedResultsControl | None:
    """
    Return the paged results control from the controls a server sent back,
    if there is one.
    """
    for ctrl in serverctrls or []:
        if ctrl.controlType == SimplePagedResultsControl.controlType:
            return ctrl
    return None


class LDAPDirectory(DirectoryCapability):
    """
    A :py:class:`DirectoryCapability` backed by a real ``python-ldap``
    connection.

    The connection is opened by :py:meth:`bind` and dropped by
    :py:meth:`unbind`; binding again after an unbind opens a new one.  All
    wire exchanges happen under a lock, so one instance can be shared by
    several threads.

    Args:
        uri: the LDAP URI of the server

    Keyword Args:
        timeout: network timeout in seconds
        use_starttls: if ``True``, do a StartTLS right after connecting
        follow_referrals: if ``True``, let libldap chase referrals

    """

    def __init__(
        self,
        uri: str,
        timeout: float = 10.0,
        use_starttls: bool = False,
        follow_referrals: bool = False,
    ) -> None:
        self.uri: str = uri  #: the LDAP URI we connect to
        self.timeout: float = timeout
        self.use_starttls: bool = use_starttls
        self.follow_referrals: bool = follow_referrals
        self._conn: ldap.ldapobject.LDAPObject | None = None  # type: ignore[name-defined]
        self._lock = threading.RLock()

    @classmethod
    def from_config(cls, config: Config) -> LDAPDirectory:
        return cls(
            config.url,
            timeout=config.timeout,
            use_starttls=config.use_starttls,
            follow_referrals=config.follow_referrals,
        )

    def _connect(self) -> ldap.ldapobject.LDAPObject:  # type: ignore[name-defined]
        conn = ldap.initialize(self.uri)
        try:
            conn.set_option(ldap.OPT_PROTOCOL_VERSION, ldap.VERSION3)  # type: ignore[attr-defined]
            conn.set_option(ldap.OPT_REFERRALS, 1 if self.follow_referrals else 0)  # type: ignore[attr-defined]
            conn.set_option(ldap.OPT_NETWORK_TIMEOUT, float(self.timeout))  # type: ignore[attr-defined]
            conn.set_option(ldap.OPT_DEREF, ldap.DEREF_NEVER)  # type: ignore[attr-defined]
            if self.use_starttls:
                conn.start_tls_s()
        except ldap.LDAPError:
            try:
                conn.unbind_s()
            except ldap.LDAPError as exc:
                logger.debug("ldap_adc.live.close.failed uri=%s error=%s", self.uri, exc)
            raise
        return conn

    @property
    def connection(self) -> ldap.ldapobject.LDAPObject:  # type: ignore[name-defined]
        """
        The open connection.

        Raises:
            ldap.SERVER_DOWN: we have no open connection

        """
        if self._conn is None:
            raise ldap.SERVER_DOWN(  # type: ignore[attr-defined]
                {"desc": "Can't contact LDAP server", "info": "not connected"}
            )
        return self._conn

    def bind(self, dn: str, password: str) -> None:
        with self._lock:
            if self._conn is None:
                self._conn = self._connect()
            logger.debug("ldap_adc.live.bind uri=%s dn=%s", self.uri, dn)
            self._conn.simple_bind_s(dn, password)

    def search(
        self, spec: SearchSpec, paging: PagingState | None = None
    ) -> tuple[list[Entry], PagingState | None]:
        serverctrls = None
        if paging is not None:
            serverctrls = [
                SimplePagedResultsControl(
                    True,  # noqa: FBT003
                    size=paging.page_size,
                    cookie=paging.cookie,
                )
            ]
        with self._lock:
            conn = self.connection
            # python-ldap sends ``timeout`` as the request's time limit
            msgid = conn.search_ext(
                spec.base_dn,
                spec.scope,
                spec.filterstr,
                list(spec.attributes) or None,
                serverctrls=serverctrls,
                timeout=spec.time_limit or -1,
            )
            _, rdata, _, rctrls = conn.result3(msgid)
        entries = to_entries(rdata)
        if paging is None:
            return entries, None
        ctrl = paged_control(rctrls)
        if ctrl is None:
            return entries, None
        return entries, paging.next(ctrl.cookie)

    def add(self, dn: str, attributes: AttributeValues) -> None:
        modlist: AddModList = [
            (name, encode_values(values)) for name, values in attributes.items()
        ]
        with self._lock:
            self.connection.add_s(dn, modlist)

    def modify(self, dn: str, replacements: AttributeValues) -> None:
        modlist: ModList = [
            (ldap.MOD_REPLACE, name, encode_values(values))  # type: ignore[attr-defined]
            for name, values in replacements.items()
        ]
        with self._lock:
            self.connection.modify_s(dn, modlist)

    def modify_dn(self, dn: str, new_rdn: str, delete_old_rdn: bool = True) -> None:
        with self._lock:
            self.connection.rename_s(dn, new_rdn, delold=int(delete_old_rdn))

    def unbind(self) -> None:
        with self._lock:
            conn, self._conn = self._conn, None
            if conn is not None:
                conn.unbind_s()
