from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from .exceptions import ValidationError


def _lookup(attributes: dict[str, str], name: str) -> str:
    if name in attributes:
        return attributes[name]
    wanted = name.lower()
    for attr, value in attributes.items():
        if attr.lower() == wanted:
            return value
    return ""


@dataclass(frozen=True)
class UserGroup:
    """A group a :py:class:`User` belongs to."""

    dn: str
    id: str


@dataclass(frozen=True)
class GroupMember:
    """A member of a :py:class:`Group`."""

    dn: str
    id: str


@dataclass
class User:
    """
    An Active Directory user.

    :py:attr:`attributes` holds the first value of every attribute the
    directory returned; multi-valued attributes lose all but their first
    value.  :py:attr:`groups` is only filled in when the lookup did the
    groups search.
    """

    dn: str
    id: str  #: the value of the configured id attribute, or ``""``
    attributes: dict[str, str] = field(default_factory=dict)
    groups: list[UserGroup] = field(default_factory=list)

    def get_string_attribute(self, name: str) -> str:
        """
        Return the value of attribute ``name``, or ``""`` if the user doesn't
        have it.  Attribute names match case-insensitively.
        """
        return _lookup(self.attributes, name)

    def is_group_member(self, group_id: str) -> bool:
        return any(group.id == group_id for group in self.groups)

    def groups_dn(self) -> list[str]:
        return [group.dn for group in self.groups]

    def groups_id(self) -> list[str]:
        return [group.id for group in self.groups]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Group:
    """
    An Active Directory group.  See :py:class:`User` for how
    :py:attr:`attributes` is flattened.  :py:attr:`members` is only filled in
    when the lookup did the members search.
    """

    dn: str
    id: str  #: the value of the configured id attribute, or ``""``
    attributes: dict[str, str] = field(default_factory=dict)
    members: list[GroupMember] = field(default_factory=list)

    def get_string_attribute(self, name: str) -> str:
        return _lookup(self.attributes, name)

    def members_dn(self) -> list[str]:
        return [member.dn for member in self.members]

    def members_id(self) -> list[str]:
        return [member.id for member in self.members]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class MembershipDelta:
    """
    The member DNs one reconcile call will add to or remove from a group.
    Only one of the two sets is used by any given call.
    """

    to_add: set[str] = field(default_factory=set)
    to_remove: set[str] = field(default_factory=set)

    def __bool__(self) -> bool:
        return bool(self.to_add or self.to_remove)

    def apply(self, current: list[str]) -> list[str]:
        """
        Return the member list that results from applying us to ``current``.
        Existing members keep their order and come first; DNs compare
        case-insensitively.
        """
        removed = {dn.lower() for dn in self.to_remove}
        result = [dn for dn in current if dn.lower() not in removed]
        present = {dn.lower() for dn in result}
        for dn in sorted(self.to_add):
            if dn.lower() not in present:
                result.append(dn)
                present.add(dn.lower())
        return result


@dataclass
class _LookupArgs:
    #: the id to look up, matched against the configured id attribute
    id: str = ""
    #: the DN to look up; takes precedence over :py:attr:`id`
    dn: str = ""
    #: a raw LDAP filter; takes precedence over :py:attr:`dn` and :py:attr:`id`.
    #: It is used as is, so escape any values in it yourself.
    filterstr: str = ""
    #: the attributes to fetch instead of the configured ones
    attributes: list[str] | None = None

    def validate(self) -> None:
        """
        Raises:
            ValidationError: none of :py:attr:`id`, :py:attr:`dn` or
                :py:attr:`filterstr` was given

        """
        if not (self.id or self.dn or self.filterstr):
            raise ValidationError("neither of ID, DN or Filter provided")


@dataclass
class GetUserArgs(_LookupArgs):
    """What :py:meth:`ldap_adc.client.Client.get_user` should look for."""

    #: don't look up the groups the user belongs to
    skip_groups_search: bool = False


@dataclass
class GetGroupArgs(_LookupArgs):
    """What :py:meth:`ldap_adc.client.Client.get_group` should look for."""

    #: don't look up the members of the group
    skip_members_search: bool = False
