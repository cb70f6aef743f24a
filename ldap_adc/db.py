from __future__ import annotations

import json
import re
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import ldap
import ldap.dn
from ldap_filter import Filter  # type: ignore[reportUnknownVariableType]
from ldap_filter.parser import ParseError

from .types import (
    AddModList,
    Attrlist,
    CILDAPData,
    LDAPData,
    LDAPObjectStore,
    LDAPRecord,
    LDAPSearchResult,
    ModList,
    RawLDAPObjectStore,
)


@dataclass
class LDAPCallRecord:
    """
    A single call record, used by :py:class:`CallHistory` to store
    information about calls to :py:class:`ldap_adc.fixture.FakeDirectory`
    methods.

    :py:attr:`api_name` is the name of the method called (e.g. ``bind``,
    ``search``).

    :py:attr:`args` is the argument list of the call, including defaults for
    keyword arguments not passed.  This is a dict where the key is the name of
    the positional or keyword argument, and the value is the passed in (or
    default) value for that argument.

    Example:
        If we make this call to a :py:class:`FakeDirectory`::

            directory.modify('OU=group1,DC=company,DC=com', {'member': []})

        This will be recorded as::

            LDAPCallRecord(
                api_name='modify',
                args={
                    'dn': 'OU=group1,DC=company,DC=com',
                    'replacements': {'member': []},
                }
            )

    """

    api_name: str  #: the name of the method called
    args: dict[str, Any]  #: the args and kwargs dict


class CallHistory:
    """
    Records the call history of a :py:class:`ldap_adc.fixture.FakeDirectory`
    as :py:class:`LDAPCallRecord` objects.  It works in conjunction with the
    ``@record_call`` decorator.

    We use this in our tests with appropriate asserts to ensure that our code
    called the directory methods we expected, in the order we expected, with
    the arguments we expected.
    """

    def __init__(self, calls: list[LDAPCallRecord] | None = None):
        self._calls: list[LDAPCallRecord] = []
        if calls:
            self._calls = calls

    def register(self, api_name: str, arguments: dict[str, Any]) -> None:
        """
        Register a new call record.  This is used by the ``@record_call``
        decorator.

        Args:
            api_name: the name of the method called
            arguments: a dict where the keys are argument names, and the values
                are passed in values for those arguments

        :meta private:

        """
        self._calls.append(LDAPCallRecord(api_name, arguments))

    def filter_calls(self, api_name: str) -> list[LDAPCallRecord]:
        """
        Filter our call history by method name.

        Args:
            api_name: look through our history for calls to this method

        Returns:
            A list of :py:class:`LDAPCallRecord` objects in the order in which
            the calls were made.

        """
        return [call for call in self._calls if call.api_name == api_name]

    @property
    def calls(self) -> list[LDAPCallRecord]:
        """
        Returns the list of all calls made against the parent object.
        """
        return self._calls

    @property
    def names(self) -> list[str]:
        """
        Returns the names of the methods called, in the order they were
        called.

        Example:
            To test that your code did exactly one ``modify`` call::

                self.assertEqual(self.directory.calls.names.count('modify'), 1)

        """
        return [call.api_name for call in self._calls]


class ObjectStore:
    """
    Represents our simulated LDAP object store.  A
    :py:class:`ldap_adc.fixture.FakeDirectory` answers from one of these.

    Entries are kept in insertion order, and that is the order searches
    return them in.
    """

    _DEFAULT_SEARCH_RE: re.Pattern[str] = re.compile(
        r"^\(objectclass=\*\)$", re.IGNORECASE
    )

    def __init__(self) -> None:
        # raw_objects preserves the object attribute case as it was given to us
        # by register_object, and retains the values as list[bytes]
        self.raw_objects: RawLDAPObjectStore = (
            RawLDAPObjectStore()
        )  #: LDAP records as they would have been returned by ``python-ldap``
        # objects has the same data as raw_objects, but with case insensitive
        # attribute names and values converted to list[str]; Filter.match()
        # needs both
        self.objects: LDAPObjectStore = (
            LDAPObjectStore()
        )  #: LDAP records set up to make searching better

    def convert_LDAPData(self, data: LDAPData) -> CILDAPData:  # noqa: N802
        """
        Convert an incoming ``LDAPData`` dict (``dict[str, list[bytes]]``)
        to a ``CILDAPData`` dict (``CaseInsensitiveDict[str, list[str]]``).

        ``ldap_filter.Filter.match`` only works with strings, not bytes.
        Values that aren't UTF-8 are backslash-escaped so that they can still
        be stored.

        Args:
            data: the LDAPData dict to convert

        Returns:
            The converted CILDAPData dict.

        """
        d: dict[str, Any] = {}
        for key, value in data.items():
            d[key] = [v.decode("utf8", errors="backslashreplace") for v in value]
        return CILDAPData(d)

    ## Object store construction

    def load_objects(self, filename: str | Path) -> None:
        """
        Load a list of LDAP records stored as JSON from a file into our internal
        database.  Use this when setting up the data you will use to run your
        tests.

        Note:
            JSON has no concept of ``bytes`` or ``tuple``, so the records in
            the file have type ``list[str, dict[str, list[str]]]``.  We
            convert them to ``tuple[str, dict[str, list[bytes]]]`` before
            registering them.

        Args:
            filename: the path to the JSON file to load

        Raises:
            ldap.ALREADY_EXISTS: there is already an object in our object store
                with this dn
            ldap.INVALID_DN_SYNTAX: one of the object DNs is not well formed

        """
        with Path(filename).open(encoding="utf-8") as fd:
            objects = json.load(fd)
        records: list[LDAPRecord] = []
        for obj in objects:
            dn, data = obj
            new_data: LDAPData = {}
            for attr, value in data.items():
                new_data[attr] = [entry.encode("utf-8") for entry in value]
            records.append((dn, new_data))
        self.register_objects(records)

    def register_objects(self, objs: list[LDAPRecord]) -> None:
        """
        Load a list of LDAP records into our internal database.  Each record
        in the list should be in exactly the format that ``python-ldap``
        itself returns: a 2-tuple with dn as the first element and the
        attribute/value dict as the second element.

        Example:
            >>> store = ObjectStore()
            >>> store.register_objects([
                (
                    'OU=user1,DC=company,DC=com',
                    {
                        'sAMAccountName': [b'user1'],
                        'objectClass': [b'top', b'person', b'user'],
                    }
                ),
            ])

        Args:
            objs: A list of LDAP records as they would have been returned by
                ``ldap.ldapobject.LDAPObject.search_s()``

        Raises:
            ldap.ALREADY_EXISTS: there is already an object in our object store
                with this dn
            ldap.INVALID_DN_SYNTAX: one of the object DNs is not well formed
            TypeError: the LDAPData portion for an object was not of type
                ``dict[str, list[bytes]]``

        """
        for obj in objs:
            self.register_object(obj)

    def register_object(self, obj: LDAPRecord) -> None:
        """
        Add an LDAP record our internal database.

        Args:
            obj: An LDAP record as it would have been returned by
                ``ldap.ldapobject.LDAPObject.search_s()``

        Raises:
            ldap.ALREADY_EXISTS: there is already an object in our object store
                with this dn
            ldap.INVALID_DN_SYNTAX: the DN is not well formed
            TypeError: the LDAPData portion was not of type ``dict[str, list[bytes]]``

        """
        if self.exists(obj[0]):
            raise ldap.ALREADY_EXISTS({"desc": "Object already exists"})  # type: ignore[attr-defined]
        self.set(obj[0], deepcopy(obj[1]))

    # Helpers

    def __check_bytes(self, value: Any) -> None:
        """
        Check a value list, ensuring that we got ``list[bytes]`` and not
        another type.

        Raises:
            TypeError: ``value`` is not a ``list[bytes]``

        """
        for v in value:
            if not isinstance(v, bytes):
                msg = (
                    f"('Tuple_to_LDAPMod(): expected a byte string in the list', '{v}')"
                )
                raise TypeError(msg)

    def _validate_dn(self, dn: str, operation: int = ldap.RES_ANY) -> None:  # type: ignore[attr-defined]
        """
        Validate that ``dn`` is a well formed DN.

        Args:
            dn: the DN to validate

        Keyword Args:
            operation: the ``msgtype`` to set on the exception

        Raises:
            ldap.INVALID_DN_SYNTAX: the dn was not well-formed

        """
        if not ldap.dn.is_dn(dn):
            raise ldap.INVALID_DN_SYNTAX(  # type: ignore[attr-defined]
                {
                    "msgtype": operation,
                    "msgid": 3,
                    "result": 34,
                    "desc": "Invalid DN syntax",
                    "ctrls": [],
                    "info": "DN value invalid per syntax\n",
                }
            )

    def __validate_LDAPRecord(self, obj: LDAPRecord) -> None:  # noqa: N802
        dn, data = obj
        self._validate_dn(dn)
        for attr, value in data.items():
            if not isinstance(attr, str):
                msg = f"attributes must be of type str: '{attr!r}'"
                raise TypeError(msg)
            if not isinstance(value, list):
                msg = f"values must be of type list[bytes]: '{value!r}'"
                raise TypeError(msg)
            self.__check_bytes(value)

    def __parse_filterstr(self, filterstr: str) -> Any:
        try:
            filt = Filter.parse(filterstr)
        except ParseError as exc:
            raise ldap.FILTER_ERROR(  # type: ignore[attr-defined]
                {
                    "result": -7,
                    "desc": "Bad search filter",
                    "errno": 35,
                    "ctrls": [],
                    "info": "Resource temporarily unavailable",
                }
            ) from exc
        return filt

    def __filter_attributes(
        self, obj: LDAPData, attrlist: list[str] | None = None
    ) -> LDAPData:
        """
        Return just the attributes on ``obj`` named in ``attrlist``.   If
        ``attrlist`` is empty or "``*``"  is in ``attrlist``, return all
        attributes on ``obj``.

        Note:
            We return a :py:func:`copy.deepcopy` of the object, not the actual
            object.  This ensures that if the caller modifies the object they
            don't update the objects in us unintentionally.

        """
        if not attrlist or "*" in attrlist:
            return deepcopy(obj)
        wanted: Attrlist = Attrlist()
        for attr in attrlist:
            wanted[attr] = attr
        return {attr: deepcopy(value) for attr, value in obj.items() if attr in wanted}

    def _no_such_object(self, dn: str, operation: int) -> ldap.LDAPError:
        return ldap.NO_SUCH_OBJECT(  # type: ignore[attr-defined]
            {
                "msgtype": operation,
                "msgid": 4,
                "result": 32,
                "desc": "No such object",
                "ctrls": [],
                "info": f"no entry named '{dn}'",
            }
        )

    # Main methods

    @property
    def count(self) -> int:
        return len(self.objects)

    def exists(self, dn: str, validate: bool = True) -> bool:
        """
        Test whether an object with dn ``dn`` exists.

        Args:
            dn: the dn of the object to look for

        Keyword Args:
            validate: if ``True``, validate that ``dn`` is a valid dn

        Returns:
            ``True`` if the object exists, ``False`` otherwise.

        """
        if validate:
            self._validate_dn(dn, ldap.RES_SEARCH_ENTRY)  # type: ignore[attr-defined]
        return dn in self.objects

    def get(self, dn: str) -> LDAPData:
        """
        Return all data for an object from our object store.  This is the
        stored dict itself, not a copy.

        Args:
            dn: the dn of the object to get

        Raises:
            ldap.NO_SUCH_OBJECT: no object with dn of ``dn`` exists in our object store

        Returns:
            The data for an LDAP object

        """
        self._validate_dn(dn, ldap.RES_SEARCH_ENTRY)  # type: ignore[attr-defined]
        try:
            return self.raw_objects[dn]
        except KeyError as exc:
            raise self._no_such_object(dn, ldap.RES_SEARCH_ENTRY) from exc  # type: ignore[attr-defined]

    def copy(self, dn: str) -> LDAPData:
        """
        Return a :py:func:`copy.deepcopy` of the data for an object from our
        object store.

        Raises:
            ldap.NO_SUCH_OBJECT: no object with dn of ``dn`` exists in our object store

        """
        return deepcopy(self.get(dn))

    def _set(self, dn: str, data: LDAPData) -> None:
        """
        Add or update data for the object with dn ``dn``.  Subclasses that
        maintain derived attributes use this to write without triggering
        their own :py:meth:`set` logic again.

        Raises:
            ldap.INVALID_DN_SYNTAX: the DN is not well formed
            TypeError: the LDAPData portion was not of type ``dict[str, list[bytes]]``

        """
        self.__validate_LDAPRecord((dn, data))
        self.raw_objects[dn] = data
        self.objects[dn] = self.convert_LDAPData(data)

    def set(self, dn: str, data: LDAPData) -> None:
        """
        Add or update data for the object with dn ``dn``.

        Args:
            dn: the dn of the object
            data: the dict of data for this object

        Raises:
            ldap.INVALID_DN_SYNTAX: the DN is not well formed
            TypeError: the LDAPData portion was not of type ``dict[str, list[bytes]]``

        """
        self._set(dn, data)

    def update(self, dn: str, modlist: ModList) -> None:  # noqa: PLR0912
        """
        Modify the object with dn of ``dn`` using the modlist ``modlist``.

        Each element in the list modlist should be a tuple of the form
        ``(mod_op: int, mod_type: str, mod_vals: list[bytes] | None)``, where
        ``mod_op`` indicates the operation (one of :py:attr:`ldap.MOD_ADD`,
        :py:attr:`ldap.MOD_DELETE`, or :py:attr:`ldap.MOD_REPLACE`).  For
        :py:attr:`ldap.MOD_DELETE`, ``mod_vals`` may be ``None`` to delete the
        whole attribute; for :py:attr:`ldap.MOD_REPLACE` an empty or ``None``
        ``mod_vals`` removes the attribute.

        The modlist is applied to a copy of the object, so an error partway
        through leaves the stored object untouched.

        Example:
            >>> import ldap
            >>> modlist = [
                (ldap.MOD_ADD, 'mail', [b'user@example.com']),
                (ldap.MOD_REPLACE, 'cn', [b'My Name']),
                (ldap.MOD_DELETE, 'description', None)
            ]

        Args:
            dn: the dn of the object to modify
            modlist: a modlist suitable for ``modify_s``

        Raises:
            ldap.INVALID_DN_SYNTAX: the dn was not well-formed
            ldap.NO_SUCH_OBJECT: no object with dn of ``dn`` exists in our
                object store
            ldap.NO_SUCH_ATTRIBUTE: you tried to delete an attribute the
                object does not have
            ldap.TYPE_OR_VALUE_EXISTS: you tried to add an value to an
                attribute, but it was already in the value list
            ldap.PROTOCOL_ERROR: unknown ``mod_op``

        """

        def get_overlaps(source: list[bytes], other: list[bytes]) -> set[bytes]:
            current = {v.lower() for v in source}
            updates = {v.lower() for v in other}
            return current.intersection(updates)

        self._validate_dn(dn, ldap.RES_MODIFY)  # type: ignore[attr-defined]
        obj = self.copy(dn)
        keys = Attrlist({attr: attr for attr in obj})
        for op, key, value in modlist:
            # Keep the attribute name case the object already uses
            key = keys.get(key, key)  # noqa: PLW2901
            if op == ldap.MOD_ADD:  # type: ignore[attr-defined]
                self.__check_bytes(value)
                if key not in obj:
                    obj[key] = list(value)
                    keys[key] = key
                elif get_overlaps(obj[key], value):
                    raise ldap.TYPE_OR_VALUE_EXISTS(  # type: ignore[attr-defined]
                        {
                            "msgtype": ldap.RES_MODIFY,  # type: ignore[attr-defined]
                            "msgid": 4,
                            "result": 20,
                            "desc": "Type or value exists",
                            "ctrls": [],
                        }
                    )
                else:
                    obj[key].extend(value)
            elif op == ldap.MOD_DELETE:  # type: ignore[attr-defined]
                if key not in obj:
                    raise ldap.NO_SUCH_ATTRIBUTE(  # type: ignore[attr-defined]
                        {
                            "msgtype": ldap.RES_MODIFY,  # type: ignore[attr-defined]
                            "msgid": 4,
                            "result": 16,
                            "desc": "No such attribute",
                            "ctrls": [],
                            "info": f"{key}: no such attribute",
                        }
                    )
                if value is None:
                    del obj[key]
                else:
                    self.__check_bytes(value)
                    overlaps = get_overlaps(obj[key], value)
                    obj[key] = [v for v in obj[key] if v.lower() not in overlaps]
                    if not obj[key]:
                        del obj[key]
            elif op == ldap.MOD_REPLACE:  # type: ignore[attr-defined]
                if not value:
                    obj.pop(key, None)
                else:
                    self.__check_bytes(value)
                    obj[key] = list(value)
                    keys[key] = key
            else:
                raise ldap.PROTOCOL_ERROR(  # type: ignore[attr-defined]
                    {
                        "msgtype": ldap.RES_MODIFY,  # type: ignore[attr-defined]
                        "msgid": 4,
                        "result": 2,
                        "desc": "Protocol error",
                        "info": "unrecognized modify operation",
                        "ctrls": [],
                    }
                )
        self.set(dn, obj)

    def create(self, dn: str, modlist: AddModList) -> None:
        """
        Create an object in our store with dn of ``dn``.

        ``modlist`` is similar the one passed to :py:meth:`update`, except
        that the operation integer is omitted from the tuples in ``modlist``.

        Example:
            >>> modlist = [
                ('sAMAccountName', [b'user3']),
                ('cn', [b'User Three']),
                ('objectClass', [b'top', b'person', b'user']),
            ]

        Args:
            dn: the dn of the object to add
            modlist: the add modlist

        Raises:
            ldap.INVALID_DN_SYNTAX: the dn was not well-formed
            ldap.ALREADY_EXISTS: an object with dn of ``dn`` already exists in
                our object store

        """
        self._validate_dn(dn, ldap.RES_ADD)  # type: ignore[attr-defined]
        if self.exists(dn):
            raise ldap.ALREADY_EXISTS(  # type: ignore[attr-defined]
                {
                    "msgtype": ldap.RES_ADD,  # type: ignore[attr-defined]
                    "msgid": 4,
                    "result": 68,
                    "desc": "Already exists",
                    "ctrls": [],
                    "info": f"entry '{dn}' already exists",
                }
            )
        entry: LDAPData = {}
        for attr, value in modlist:
            if not isinstance(attr, str):
                msg = f"Tuple_to_LDAPMod() argument 1 must be str, not {type(attr)}"
                raise TypeError(msg)
            self.__check_bytes(value)
            entry[attr] = list(value)
        self.set(dn, entry)

    def delete(self, dn: str) -> None:
        """
        Delete an object from our object store.

        Raises:
            ldap.INVALID_DN_SYNTAX: the dn was not well-formed
            ldap.NO_SUCH_OBJECT: no object with dn of ``dn`` exists in our
                object store

        """
        self._validate_dn(dn, ldap.RES_DELETE)  # type: ignore[attr-defined]
        if not self.exists(dn):
            raise self._no_such_object(dn, ldap.RES_DELETE)  # type: ignore[attr-defined]
        del self.objects[dn]
        del self.raw_objects[dn]

    def rename(self, dn: str, newrdn: str, delold: bool = True) -> str:
        """
        Give the object with dn ``dn`` the new RDN ``newrdn``, keeping it
        under the same parent.

        The new RDN value is added to the RDN attribute of the object.  If
        ``delold`` is ``True`` the old RDN value is removed from its
        attribute.

        Args:
            dn: the dn of the object to rename
            newrdn: the new RDN, e.g. ``OU=group3``

        Keyword Args:
            delold: remove the old RDN value from the object

        Raises:
            ldap.INVALID_DN_SYNTAX: ``dn`` or ``newrdn`` was not well-formed
            ldap.NO_SUCH_OBJECT: no object with dn of ``dn`` exists
            ldap.ALREADY_EXISTS: an object with the new dn already exists

        Returns:
            The new dn of the object.

        """
        self._validate_dn(dn, ldap.RES_MODRDN)  # type: ignore[attr-defined]
        self._validate_dn(newrdn, ldap.RES_MODRDN)  # type: ignore[attr-defined]
        parts = ldap.dn.str2dn(dn)
        new_rdn = ldap.dn.str2dn(newrdn)[0]
        newdn = ldap.dn.dn2str([new_rdn, *parts[1:]])
        entry = self.copy(dn)
        if newdn.lower() != dn.lower() and self.exists(newdn):
            raise ldap.ALREADY_EXISTS(  # type: ignore[attr-defined]
                {
                    "msgtype": ldap.RES_MODRDN,  # type: ignore[attr-defined]
                    "msgid": 4,
                    "result": 68,
                    "desc": "Already exists",
                    "ctrls": [],
                    "info": f"entry '{newdn}' already exists",
                }
            )
        keys = Attrlist({attr: attr for attr in entry})
        if delold:
            for attr, value, _ in parts[0]:
                key = keys.get(attr)
                if key is not None:
                    entry[key] = [
                        v for v in entry[key] if v.decode("utf-8").lower() != value.lower()
                    ]
                    if not entry[key]:
                        del entry[key]
                        del keys[key]
        for attr, value, _ in new_rdn:
            key = keys.get(attr, attr)
            values = entry.setdefault(key, [])
            if value.lower() not in {v.decode("utf-8").lower() for v in values}:
                values.append(value.encode("utf-8"))
        self.delete(dn)
        self.set(newdn, entry)
        return newdn

    def search_subtree(
        self,
        base: str,
        filterstr: str,
        attrlist: list[str] | None = None,
    ) -> LDAPSearchResult:
        """
        Do a :py:data:`ldap.SCOPE_SUBTREE` search, for objects under basedn
        ``base`` that match ``filterstr``.

        Note:
            We return a :py:func:`copy.deepcopy` of each object, not the actual
            object.  This ensures that if the caller modifies the object they
            don't update the objects in us unintentionally.

        Args:
            base: the base dn of the search; ``""`` searches everything
            filterstr: the ldap filter string

        Keyword Args:
            attrlist: the list of attributes to return for each object

        Raises:
            ldap.INVALID_DN_SYNTAX: ``base`` was not a well-formed DN
            ldap.FILTER_ERROR: ``filterstr`` is has bad filter syntax

        Returns:
            A list of LDAP objects -- 2-tuples of ``(dn, data)``.

        """
        self._validate_dn(base, ldap.RES_SEARCH_RESULT)  # type: ignore[attr-defined]
        basedn_parts = ldap.dn.explode_dn(base.lower(), flags=ldap.DN_FORMAT_LDAPV3)  # type: ignore[attr-defined]
        filt = None
        if not self._DEFAULT_SEARCH_RE.search(filterstr):
            filt = self.__parse_filterstr(filterstr)
        results: LDAPSearchResult = []
        for dn, data in self.objects.items():
            if basedn_parts:
                # ``base`` was not the Root DN, so see if the object is under ``base``
                dn_parts = ldap.dn.explode_dn(dn.lower(), flags=ldap.DN_FORMAT_LDAPV3)  # type: ignore[attr-defined]
                if dn_parts[-len(basedn_parts) :] != basedn_parts:
                    continue
            if filt is None or filt.match(data):
                results.append(
                    (dn, self.__filter_attributes(self.raw_objects[dn], attrlist))
                )
        return results
