"""
Configuration for :py:class:`ldap_adc.client.Client`.

The configuration is a tree of pydantic models.  Build it in code, from a
``dict`` with :py:meth:`Config.from_dict`, or from a JSON file with
:py:meth:`Config.from_file`.

Filter templates are ``str.format`` strings.  ``{id}`` is replaced with the
(escaped) identifier being looked up, ``{dn}`` with the (escaped) DN.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pydantic
from ldap.filter import escape_filter_chars
from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from .exceptions import ConfigurationError

#: Attributes we ask for on users unless told otherwise
DEFAULT_USER_ATTRIBUTES: list[str] = [
    "sAMAccountName",
    "cn",
    "displayName",
    "givenName",
    "sn",
    "mail",
    "userPrincipalName",
    "userAccountControl",
]

#: Attributes we ask for on groups unless told otherwise
DEFAULT_GROUP_ATTRIBUTES: list[str] = [
    "sAMAccountName",
    "cn",
    "description",
    "mail",
    "groupType",
]


def _check_placeholder(value: str, placeholder: str) -> str:
    if placeholder not in value:
        msg = f"filter template must contain the {placeholder} placeholder: {value!r}"
        raise ValueError(msg)
    return value


class _ConfigModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class BindAccount(_ConfigModel):
    """The account we bind as when the session is established."""

    dn: str = Field(..., min_length=1, title="Bind DN")
    password: SecretStr = Field(..., title="Bind password")


class UsersConfig(_ConfigModel):
    """Where and how to find user entries."""

    search_base: str = Field(..., title="Base DN for user searches")
    id_attribute: str = Field("sAMAccountName", title="Attribute holding the user id")
    filter_by_id: str = Field(
        "(&(objectClass=person)(sAMAccountName={id}))",
        title="Filter template for looking a user up by id",
    )
    filter_by_dn: str = Field(
        "(&(objectClass=person)(distinguishedName={dn}))",
        title="Filter template for looking a user up by DN",
    )
    filter_groups_by_dn: str = Field(
        "(&(objectClass=group)(member={dn}))",
        title="Filter template for the groups a user DN belongs to",
    )
    filter_list: str = Field(
        "(objectClass=person)", title="Filter used when listing all users"
    )
    attributes: list[str] = Field(
        default_factory=lambda: list(DEFAULT_USER_ATTRIBUTES),
        title="Attributes to fetch for users",
    )

    @field_validator("filter_by_id")
    @classmethod
    def _validate_filter_by_id(cls, v: str) -> str:
        return _check_placeholder(v, "{id}")

    @field_validator("filter_by_dn", "filter_groups_by_dn")
    @classmethod
    def _validate_dn_filters(cls, v: str) -> str:
        return _check_placeholder(v, "{dn}")


class GroupsConfig(_ConfigModel):
    """Where and how to find group entries."""

    search_base: str = Field(..., title="Base DN for group searches")
    id_attribute: str = Field(
        "sAMAccountName", title="Attribute holding the group id"
    )
    filter_by_id: str = Field(
        "(&(objectClass=group)(sAMAccountName={id}))",
        title="Filter template for looking a group up by id",
    )
    filter_by_dn: str = Field(
        "(&(objectClass=group)(distinguishedName={dn}))",
        title="Filter template for looking a group up by DN",
    )
    filter_members_by_dn: str = Field(
        "(&(objectClass=person)(memberOf={dn}))",
        title="Filter template for the members of a group DN",
    )
    filter_list: str = Field(
        "(objectClass=group)", title="Filter used when listing all groups"
    )
    attributes: list[str] = Field(
        default_factory=lambda: list(DEFAULT_GROUP_ATTRIBUTES),
        title="Attributes to fetch for groups",
    )

    @field_validator("filter_by_id")
    @classmethod
    def _validate_filter_by_id(cls, v: str) -> str:
        return _check_placeholder(v, "{id}")

    @field_validator("filter_by_dn", "filter_members_by_dn")
    @classmethod
    def _validate_dn_filters(cls, v: str) -> str:
        return _check_placeholder(v, "{dn}")


class Config(_ConfigModel):
    """Top level client configuration."""

    url: str = Field(..., min_length=1, title="LDAP URI, e.g. ldaps://dc1:636")
    bind: BindAccount
    users: UsersConfig
    groups: GroupsConfig
    timeout: float = Field(
        10.0, gt=0, title="Seconds; sent as the time limit of every search"
    )
    page_size: int = Field(500, gt=0, title="Page size for listing searches")
    max_pages: int | None = Field(
        None,
        gt=0,
        title="Give up on a paged search after this many pages (None: never)",
    )
    use_starttls: bool = Field(False, title="Issue StartTLS after connecting")
    follow_referrals: bool = Field(False, title="Let libldap chase referrals")

    @property
    def time_limit(self) -> int:
        """The per-search time limit in whole seconds."""
        return max(1, int(self.timeout))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        """
        Build a :py:class:`Config` from a plain ``dict``.

        Raises:
            ConfigurationError: ``data`` did not validate

        """
        try:
            return cls.model_validate(data)
        except pydantic.ValidationError as exc:
            raise ConfigurationError(f"invalid configuration: {exc}") from exc

    @classmethod
    def from_file(cls, filename: str | Path) -> Config:
        """
        Load a :py:class:`Config` from a JSON file.

        Raises:
            ConfigurationError: the file could not be read or did not validate

        """
        path = Path(filename)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigurationError(f"can't read configuration {path}: {exc}") from exc
        try:
            return cls.model_validate_json(text)
        except pydantic.ValidationError as exc:
            raise ConfigurationError(f"invalid configuration in {path}: {exc}") from exc


def render_filter(template: str, **values: str) -> str:
    r"""
    Substitute ``values`` into the filter ``template``, escaping each value
    with :py:func:`ldap.filter.escape_filter_chars` first.

    Example:
        >>> render_filter("(&(objectClass=person)(sAMAccountName={id}))", id="j*")
        '(&(objectClass=person)(sAMAccountName=j\\2a))'

    """
    return template.format(**{k: escape_filter_chars(v) for k, v in values.items()})
