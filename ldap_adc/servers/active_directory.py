"""
An :py:class:`ldap_adc.db.ObjectStore` that behaves like an Active Directory
domain controller in the ways our client can observe:

* every entry carries ``distinguishedName``, ``whenCreated`` and
  ``whenChanged``
* ``memberOf`` is a back-link maintained from the ``member`` values of the
  groups in the store, and is read-only for writers
* deleting or renaming an entry updates the ``member`` values that point at it
* a ``unicodePwd`` write (the quoted password encoded as UTF-16-LE) sets the
  password used for binds; ``unicodePwd`` itself is never stored
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Final

import ldap

from ..db import ObjectStore
from ..types import AddModList, Attrlist, LDAPData, ModList

#: Attributes the directory computes itself; writers may not set them
READONLY_ATTRIBUTES_AD: Final[list[str]] = [
    "distinguishedName",
    "memberOf",
    "whenCreated",
    "whenChanged",
]


def generalized_time(when: datetime | None = None) -> bytes:
    """
    Return ``when`` (default: now) in the GeneralizedTime format AD uses for
    ``whenCreated`` and ``whenChanged``, e.g. ``20241001120000.0Z``.
    """
    if when is None:
        when = datetime.now(timezone.utc)
    return when.strftime("%Y%m%d%H%M%S.0Z").encode("utf-8")


def decode_unicode_pwd(value: bytes) -> bytes:
    """
    Turn a ``unicodePwd`` value back into the plain password.

    Raises:
        ldap.UNWILLING_TO_PERFORM: the value is not a quoted UTF-16-LE string

    """
    try:
        text = value.decode("utf-16-le")
    except UnicodeDecodeError as exc:
        raise _unwilling("unicodePwd must be encoded as UTF-16-LE") from exc
    if len(text) < 2 or not (text.startswith('"') and text.endswith('"')):  # noqa: PLR2004
        raise _unwilling("unicodePwd must be a quoted string")
    return text[1:-1].encode("utf-8")


def _unwilling(info: str, operation: int = ldap.RES_MODIFY) -> ldap.LDAPError:  # type: ignore[attr-defined]
    return ldap.UNWILLING_TO_PERFORM(  # type: ignore[attr-defined]
        {
            "msgtype": operation,
            "msgid": 3,
            "result": 53,
            "desc": "Server is unwilling to perform",
            "ctrls": [],
            "info": info,
        }
    )


def _find(data: LDAPData, attr: str) -> str | None:
    """Return the key ``data`` uses for ``attr``, matching case-insensitively."""
    wanted = attr.lower()
    for key in data:
        if key.lower() == wanted:
            return key
    return None


def _values(data: LDAPData, attr: str) -> list[bytes]:
    key = _find(data, attr)
    return data[key] if key is not None else []


def _pop(data: LDAPData, attr: str) -> list[bytes] | None:
    key = _find(data, attr)
    return data.pop(key) if key is not None else None


def _replace(data: LDAPData, attr: str, values: list[bytes]) -> None:
    key = _find(data, attr)
    if key is not None:
        del data[key]
    if values:
        data[attr] = values


class ActiveDirectoryStore(ObjectStore):
    """
    An object store that maintains the Active Directory computed attributes
    described in :py:mod:`ldap_adc.servers.active_directory`.
    """

    def _check_writable(self, attrs: list[str], operation: int) -> None:
        readonly = Attrlist({attr: attr for attr in READONLY_ATTRIBUTES_AD})
        for attr in attrs:
            if attr in readonly:
                raise _unwilling(
                    f"{readonly[attr]} is maintained by the directory", operation
                )

    def _member_of(self, dn: str) -> list[bytes]:
        """
        Return the DNs of all entries whose ``member`` attribute lists ``dn``.
        """
        target = dn.lower()
        return [
            group_dn.encode("utf-8")
            for group_dn, data in self.objects.items()
            if any(member.lower() == target for member in data.get("member", []))
        ]

    def _refresh_member_of(self, dns: set[str]) -> None:
        for dn in dns:
            if not self.exists(dn, validate=False):
                continue
            data = self.copy(dn)
            _replace(data, "memberOf", self._member_of(dn))
            self._set(dn, data)

    def _members(self, data: LDAPData) -> set[str]:
        return {v.decode("utf-8") for v in _values(data, "member")}

    def set(self, dn: str, data: LDAPData) -> None:
        """
        Add or update the object ``dn``, filling in the computed attributes
        and refreshing the ``memberOf`` of every entry whose membership
        changed.

        Raises:
            ldap.INVALID_DN_SYNTAX: the DN is not well formed
            ldap.UNWILLING_TO_PERFORM: ``unicodePwd`` was malformed

        """
        old_members: set[str] = set()
        if self.exists(dn):
            old = self.get(dn)
            old_members = self._members(old)
            created = _values(old, "whenCreated")
        else:
            created = _values(data, "whenCreated")
        now = generalized_time()
        _replace(data, "distinguishedName", [dn.encode("utf-8")])
        _replace(data, "whenCreated", created or [now])
        _replace(data, "whenChanged", [now])
        pwd = _pop(data, "unicodePwd")
        if pwd:
            _replace(data, "userPassword", [decode_unicode_pwd(pwd[0])])
        _replace(data, "memberOf", self._member_of(dn))
        self._set(dn, data)
        new_members = self._members(data)
        self._refresh_member_of(old_members ^ new_members)

    def update(self, dn: str, modlist: ModList) -> None:
        """
        Raises:
            ldap.UNWILLING_TO_PERFORM: the modlist touches a computed attribute

        """
        self._check_writable([item[1] for item in modlist], ldap.RES_MODIFY)  # type: ignore[attr-defined]
        super().update(dn, modlist)

    def create(self, dn: str, modlist: AddModList) -> None:
        """
        Raises:
            ldap.UNWILLING_TO_PERFORM: the modlist sets a computed attribute

        """
        self._check_writable([item[0] for item in modlist], ldap.RES_ADD)  # type: ignore[attr-defined]
        super().create(dn, modlist)

    def delete(self, dn: str) -> None:
        """
        Delete ``dn`` and remove it from the ``member`` values of every group
        that lists it.
        """
        members = self._members(self.get(dn))
        groups = [g.decode("utf-8") for g in self._member_of(dn)]
        super().delete(dn)
        target = dn.lower()
        for group_dn in groups:
            data = self.copy(group_dn)
            _replace(
                data,
                "member",
                [v for v in _values(data, "member") if v.decode("utf-8").lower() != target],
            )
            self._set(group_dn, data)
        self._refresh_member_of(members)

    def rename(self, dn: str, newrdn: str, delold: bool = True) -> str:
        """
        Rename ``dn`` and point the ``member`` values that referenced it at
        the new DN.
        """
        groups = [g.decode("utf-8") for g in self._member_of(dn)]
        newdn = super().rename(dn, newrdn, delold=delold)
        for group_dn in groups:
            # the group may itself have been the entry we renamed
            target = newdn if group_dn.lower() == dn.lower() else group_dn
            data = self.copy(target)
            data.setdefault(_find(data, "member") or "member", []).append(
                newdn.encode("utf-8")
            )
            self.set(target, data)
        return newdn
