from __future__ import annotations

from typing import TYPE_CHECKING

from .config import render_filter
from .directory import Entry, SearchSpec
from .live import LDAPDirectory
from .logging import logger
from .mapper import EntryMapper
from .models import GetGroupArgs, GetUserArgs, Group, GroupMember, User, UserGroup
from .paging import PaginatedSearchAggregator
from .reconciler import MembershipReconciler
from .session import SessionManager

if TYPE_CHECKING:
    from .config import Config
    from .directory import DirectoryCapability
    from .types import AttributeValues


def encode_unicode_pwd(password: str) -> bytes:
    """
    Encode ``password`` the way Active Directory wants it in ``unicodePwd``:
    surrounded by double quotes and encoded as UTF-16-LE.
    """
    return f'"{password}"'.encode("utf-16-le")


class Client:
    """
    An Active Directory client.

    Example:
        >>> from ldap_adc import Client, Config
        >>> config = Config.from_file('/etc/adc.json')
        >>> with Client(config) as client:
        ...     user = client.get_user(id='jdoe')
        ...     client.add_group_members('staff', 'jdoe', 'asmith')

    The client binds with the configured account the first time it needs to
    (or when you call :py:meth:`connect`), and re-binds once if the
    connection drops.  Lookups that find nothing return ``None``; directory
    errors are raised as the ``python-ldap`` exceptions the server sent.

    A :py:class:`Client` may be used from several threads at once.

    Args:
        config: the client configuration

    Keyword Args:
        directory: the directory to talk to.  Defaults to an
            :py:class:`ldap_adc.live.LDAPDirectory` for ``config.url``; tests
            pass a :py:class:`ldap_adc.fixture.FakeDirectory`.

    """

    def __init__(self, config: Config, directory: DirectoryCapability | None = None) -> None:
        self.config: Config = config
        self.directory: DirectoryCapability = (
            directory if directory is not None else LDAPDirectory.from_config(config)
        )
        self.session: SessionManager = SessionManager(self.directory, config.bind)
        self.pager: PaginatedSearchAggregator = PaginatedSearchAggregator(
            self.session, max_pages=config.max_pages
        )
        self.mapper: EntryMapper = EntryMapper()
        self.reconciler: MembershipReconciler = MembershipReconciler(self)

    # Session

    def connect(self) -> None:
        """
        Bind now instead of on first use.  This also re-binds a session that
        has failed.

        Raises:
            ldap.LDAPError: the bind failed

        """
        self.session.bind()

    def close(self) -> None:
        self.session.unbind()

    def __enter__(self) -> Client:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # Helpers

    def _spec(
        self, base_dn: str, filterstr: str, attributes: list[str] | None
    ) -> SearchSpec:
        return SearchSpec(
            base_dn,
            filterstr,
            attributes=tuple(attributes or ()),
            time_limit=self.config.time_limit,
        )

    def search_entry(self, spec: SearchSpec) -> Entry | None:
        """
        Run a single unpaged search and return the first entry found.  Ids
        need not be unique, so several entries may match; the first one in
        directory order wins.
        """
        entries, _ = self.session.execute(
            lambda directory: directory.search(spec),
            description=f"search {spec.filterstr}",
        )
        if not entries:
            return None
        if len(entries) > 1:
            logger.debug(
                "ldap_adc.client.search.ambiguous filter=%s matches=%d using=%s",
                spec.filterstr,
                len(entries),
                entries[0].dn,
            )
        return entries[0]

    def _lookup_filter(
        self, args: GetUserArgs | GetGroupArgs, filter_by_id: str, filter_by_dn: str
    ) -> str:
        args.validate()
        if args.filterstr:
            return args.filterstr
        if args.dn:
            return render_filter(filter_by_dn, dn=args.dn)
        return render_filter(filter_by_id, id=args.id)

    def _user_groups(self, dn: str) -> list[UserGroup]:
        id_attr = self.config.groups.id_attribute
        spec = self._spec(
            self.config.groups.search_base,
            render_filter(self.config.users.filter_groups_by_dn, dn=dn),
            [id_attr],
        )
        return [
            self.mapper.to_user_group(entry, id_attr)
            for entry in self.pager.list_all(spec, self.config.page_size)
        ]

    def _group_members(self, dn: str) -> list[GroupMember]:
        id_attr = self.config.users.id_attribute
        spec = self._spec(
            self.config.users.search_base,
            render_filter(self.config.groups.filter_members_by_dn, dn=dn),
            [id_attr],
        )
        return [
            self.mapper.to_group_member(entry, id_attr)
            for entry in self.pager.list_all(spec, self.config.page_size)
        ]

    # Users

    def get_user(
        self,
        id: str = "",  # noqa: A002
        dn: str = "",
        filterstr: str = "",
        attributes: list[str] | None = None,
        skip_groups_search: bool = False,
    ) -> User | None:
        """
        Look up one user.

        If ``filterstr`` is given it is used as is; otherwise if ``dn`` is
        given we look the user up by DN, and otherwise by ``id``.  Ids need
        not be unique: if several users match, the first one the directory
        returns wins.

        Keyword Args:
            id: the value of the configured id attribute to look for
            dn: the DN of the user
            filterstr: an LDAP filter; escape any values in it yourself
            attributes: the attributes to fetch instead of the configured ones
            skip_groups_search: don't fill in :py:attr:`User.groups`

        Raises:
            ValidationError: none of ``id``, ``dn`` or ``filterstr`` was given
            ldap.LDAPError: a search failed

        Returns:
            The user, or ``None`` if no user matched.

        """
        users = self.config.users
        args = GetUserArgs(
            id=id,
            dn=dn,
            filterstr=filterstr,
            attributes=attributes,
            skip_groups_search=skip_groups_search,
        )
        filterstr = self._lookup_filter(args, users.filter_by_id, users.filter_by_dn)
        entry = self.search_entry(
            self._spec(
                users.search_base,
                filterstr,
                args.attributes if args.attributes is not None else users.attributes,
            )
        )
        if entry is None:
            return None
        user = self.mapper.to_user(entry, users.id_attribute)
        if not args.skip_groups_search:
            user.groups = self._user_groups(entry.dn)
        return user

    def list_users(
        self,
        attributes: list[str] | None = None,
        filterstr: str | None = None,
        page_size: int | None = None,
    ) -> list[User]:
        """
        Return every user, fetched in pages.  :py:attr:`User.groups` is not
        filled in.

        Keyword Args:
            attributes: the attributes to fetch instead of the configured ones
            filterstr: use this filter instead of the configured list filter
            page_size: use this page size instead of the configured one

        Raises:
            PagingLimitExceeded: the search ran past ``max_pages`` pages
            ldap.LDAPError: a search failed

        """
        users = self.config.users
        spec = self._spec(
            users.search_base,
            filterstr or users.filter_list,
            attributes if attributes is not None else users.attributes,
        )
        entries = self.pager.list_all(spec, page_size or self.config.page_size)
        return [self.mapper.to_user(entry, users.id_attribute) for entry in entries]

    def create_user(self, dn: str, attributes: AttributeValues) -> None:
        """
        Raises:
            ldap.ALREADY_EXISTS: ``dn`` already exists

        """
        self.session.execute(
            lambda directory: directory.add(dn, attributes), description=f"add {dn}"
        )

    def update_user(self, dn: str, attributes: AttributeValues) -> None:
        """
        Replace the values of each attribute in ``attributes`` on user ``dn``.
        An empty value list removes the attribute.

        Raises:
            ldap.NO_SUCH_OBJECT: ``dn`` does not exist

        """
        self.session.execute(
            lambda directory: directory.modify(dn, attributes),
            description=f"modify {dn}",
        )

    def set_password(self, dn: str, password: str, must_change: bool = False) -> None:
        """
        Set the password of user ``dn``.  The connection must be encrypted
        (LDAPS or StartTLS) for Active Directory to accept this.

        Args:
            dn: the DN of the user
            password: the new password

        Keyword Args:
            must_change: also make the user change the password at next logon

        Raises:
            ldap.UNWILLING_TO_PERFORM: the server refused the password

        """
        self.session.execute(
            lambda directory: directory.modify(
                dn, {"unicodePwd": [encode_unicode_pwd(password)]}
            ),
            description=f"set password of {dn}",
        )
        if must_change:
            self.session.execute(
                lambda directory: directory.modify(dn, {"pwdLastSet": ["0"]}),
                description=f"expire password of {dn}",
            )

    # Groups

    def get_group(
        self,
        id: str = "",  # noqa: A002
        dn: str = "",
        filterstr: str = "",
        attributes: list[str] | None = None,
        skip_members_search: bool = False,
    ) -> Group | None:
        """
        Look up one group.  Works like :py:meth:`get_user`;
        ``skip_members_search`` skips filling in :py:attr:`Group.members`.

        Raises:
            ValidationError: none of ``id``, ``dn`` or ``filterstr`` was given
            ldap.LDAPError: a search failed

        Returns:
            The group, or ``None`` if no group matched.

        """
        groups = self.config.groups
        args = GetGroupArgs(
            id=id,
            dn=dn,
            filterstr=filterstr,
            attributes=attributes,
            skip_members_search=skip_members_search,
        )
        filterstr = self._lookup_filter(args, groups.filter_by_id, groups.filter_by_dn)
        entry = self.search_entry(
            self._spec(
                groups.search_base,
                filterstr,
                args.attributes if args.attributes is not None else groups.attributes,
            )
        )
        if entry is None:
            return None
        group = self.mapper.to_group(entry, groups.id_attribute)
        if not args.skip_members_search:
            group.members = self._group_members(entry.dn)
        return group

    def list_groups(
        self,
        attributes: list[str] | None = None,
        filterstr: str | None = None,
        page_size: int | None = None,
    ) -> list[Group]:
        """
        Return every group, fetched in pages.  :py:attr:`Group.members` is
        not filled in.  See :py:meth:`list_users` for the arguments.
        """
        groups = self.config.groups
        spec = self._spec(
            groups.search_base,
            filterstr or groups.filter_list,
            attributes if attributes is not None else groups.attributes,
        )
        entries = self.pager.list_all(spec, page_size or self.config.page_size)
        return [self.mapper.to_group(entry, groups.id_attribute) for entry in entries]

    def create_group(self, dn: str, attributes: AttributeValues) -> None:
        self.session.execute(
            lambda directory: directory.add(dn, attributes), description=f"add {dn}"
        )

    def rename_group(self, dn: str, rdn: str) -> None:
        """
        Give group ``dn`` the new RDN ``rdn`` (e.g. ``CN=new-name``), keeping
        it in the same container.  The old RDN value is removed.
        """
        self.session.execute(
            lambda directory: directory.modify_dn(dn, rdn, delete_old_rdn=True),
            description=f"rename {dn}",
        )

    def add_group_members(self, group_id: str, *member_ids: str) -> int:
        """
        Add the users with ids ``member_ids`` to the group with id
        ``group_id``.  See :py:mod:`ldap_adc.reconciler`.

        Raises:
            GroupNotFoundError: there is no group with id ``group_id``
            BatchResolutionError: looking up one of ``member_ids`` failed;
                nothing was written

        Returns:
            The number of users actually added.

        """
        return self.reconciler.add_members(group_id, member_ids)

    def delete_group_members(self, group_id: str, *member_ids: str) -> int:
        """
        Remove the users with ids ``member_ids`` from the group with id
        ``group_id``.  See :py:meth:`add_group_members`.

        Returns:
            The number of users actually removed.

        """
        return self.reconciler.remove_members(group_id, member_ids)
