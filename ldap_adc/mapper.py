from __future__ import annotations

from typing import TYPE_CHECKING

from .models import Group, GroupMember, User, UserGroup

if TYPE_CHECKING:
    from .directory import Entry


class EntryMapper:
    """
    Turns :py:class:`ldap_adc.directory.Entry` objects into our typed
    records.

    Every attribute is flattened to its first value.  The id is the first
    value of the attribute named by ``id_attr``, or ``""`` if the entry
    doesn't have it.  Group membership is not read from the entry's
    attributes: the client fills in :py:attr:`User.groups` and
    :py:attr:`Group.members` from separate searches.
    """

    @staticmethod
    def flatten(entry: Entry) -> dict[str, str]:
        return {name: values[0] if values else "" for name, values in entry.attributes.items()}

    def to_user(self, entry: Entry, id_attr: str) -> User:
        return User(
            dn=entry.dn,
            id=entry.get_attribute_value(id_attr),
            attributes=self.flatten(entry),
        )

    def to_group(self, entry: Entry, id_attr: str) -> Group:
        return Group(
            dn=entry.dn,
            id=entry.get_attribute_value(id_attr),
            attributes=self.flatten(entry),
        )

    def to_user_group(self, entry: Entry, id_attr: str) -> UserGroup:
        return UserGroup(dn=entry.dn, id=entry.get_attribute_value(id_attr))

    def to_group_member(self, entry: Entry, id_attr: str) -> GroupMember:
        return GroupMember(dn=entry.dn, id=entry.get_attribute_value(id_attr))
