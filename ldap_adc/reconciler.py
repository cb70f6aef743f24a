"""
Batched group membership changes.

Adding or removing many members at once works like this:

1. Look the group up by id and read its ``member`` values as stored.
2. Resolve every requested id to a user with a point lookup, one worker
   thread per id, and wait for all of them.
3. If any lookup failed, give up with :py:exc:`BatchResolutionError` and
   write nothing.
4. Skip ids that don't resolve to a user, and users that already are (for
   adds) or aren't (for removes) members.
5. Write the whole new member list to the group with one attribute replace,
   or write nothing if there is nothing to change.

A lookup that hangs stalls the whole batch until the search time limit
expires; there is no other timeout.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Iterable

from .config import render_filter
from .directory import SearchSpec
from .exceptions import BatchResolutionError, GroupNotFoundError, IncompleteMembersError
from .logging import logger
from .models import MembershipDelta

if TYPE_CHECKING:
    from .client import Client
    from .directory import Entry
    from .models import User


class MembershipReconciler:
    """
    Adds and removes group members in batches for a
    :py:class:`ldap_adc.client.Client`.

    The member list we write back is the group's own ``member`` attribute
    with the delta applied, so members that aren't users (nested groups,
    contacts, computers) and users outside the users search base are kept
    where they were.
    """

    def __init__(self, client: Client) -> None:
        self.client = client

    def resolve(self, group_id: str, member_ids: Iterable[str]) -> dict[str, User | None]:
        """
        Look up every id in ``member_ids`` concurrently, one thread per
        distinct id.  All lookups finish before we return or raise.

        Raises:
            BatchResolutionError: a lookup failed; if several did, this is the
                first of them in ``member_ids`` order

        Returns:
            A dict mapping each distinct id to its user, or to ``None`` if no
            user has that id.

        """
        ids = list(dict.fromkeys(member_ids))
        if not ids:
            return {}
        with ThreadPoolExecutor(
            max_workers=len(ids), thread_name_prefix="ldap_adc-resolve"
        ) as executor:
            futures = {
                member_id: executor.submit(
                    self.client.get_user, id=member_id, skip_groups_search=True
                )
                for member_id in ids
            }
        resolved: dict[str, User | None] = {}
        for member_id, future in futures.items():
            exc = future.exception()
            if exc is not None:
                raise BatchResolutionError(member_id, group_id, exc) from exc
            resolved[member_id] = future.result()
        return resolved

    def group_entry(self, group_id: str) -> Entry | None:
        """
        Look up the group with id ``group_id``, fetching only its id and its
        ``member`` values.

        Raises:
            IncompleteMembersError: the server sent only a range of the
                ``member`` values
            ldap.LDAPError: the search failed

        Returns:
            The group entry, or ``None`` if no group has that id.

        """
        groups = self.client.config.groups
        spec = SearchSpec(
            groups.search_base,
            render_filter(groups.filter_by_id, id=group_id),
            attributes=(groups.id_attribute, "member"),
            time_limit=self.client.config.time_limit,
        )
        entry = self.client.search_entry(spec)
        if entry is not None:
            for name in entry.attributes:
                # AD answers with member;range=0-1499 on groups too big to return at once
                if name.lower().startswith("member;range="):
                    raise IncompleteMembersError(entry.dn, name)
        return entry

    def _reconcile(self, group_id: str, member_ids: Iterable[str], adding: bool) -> int:
        group = self.group_entry(group_id)
        if group is None:
            raise GroupNotFoundError(group_id)
        current = group.get_attribute_values("member")
        members = {dn.lower() for dn in current}
        verb = "added to" if adding else "deleted from"
        delta = MembershipDelta()
        seen: set[str] = set()
        for member_id, user in self.resolve(group_id, member_ids).items():
            if user is None:
                logger.debug(
                    "ldap_adc.reconciler.skip account=%s group=%s reason=not-found action=%s",
                    member_id,
                    group_id,
                    verb,
                )
                continue
            is_member = user.dn.lower() in members
            if is_member == adding:
                logger.debug(
                    "ldap_adc.reconciler.skip account=%s group=%s reason=%s",
                    member_id,
                    group_id,
                    "already-member" if adding else "not-member",
                )
                continue
            if user.dn.lower() in seen:
                continue
            seen.add(user.dn.lower())
            if adding:
                delta.to_add.add(user.dn)
            else:
                delta.to_remove.add(user.dn)
        if not delta:
            return 0
        new_members = delta.apply(current)
        logger.debug(
            "ldap_adc.reconciler.write group=%s old_count=%d new_count=%d",
            group_id,
            len(current),
            len(new_members),
        )
        self.client.session.execute(
            lambda directory: directory.modify(group.dn, {"member": new_members}),
            description=f"modify member of {group.dn}",
        )
        return len(delta.to_add) + len(delta.to_remove)

    def add_members(self, group_id: str, member_ids: Iterable[str]) -> int:
        """
        Make the users with ids ``member_ids`` members of the group with id
        ``group_id``.

        Raises:
            GroupNotFoundError: there is no group with id ``group_id``
            IncompleteMembersError: the group has too many members for one read
            BatchResolutionError: looking up one of ``member_ids`` failed;
                nothing was written
            ldap.LDAPError: looking up the group or writing its members failed

        Returns:
            The number of users actually added.

        """
        return self._reconcile(group_id, member_ids, adding=True)

    def remove_members(self, group_id: str, member_ids: Iterable[str]) -> int:
        """
        Remove the users with ids ``member_ids`` from the group with id
        ``group_id``.

        Raises:
            GroupNotFoundError: there is no group with id ``group_id``
            IncompleteMembersError: the group has too many members for one read
            BatchResolutionError: looking up one of ``member_ids`` failed;
                nothing was written
            ldap.LDAPError: looking up the group or writing its members failed

        Returns:
            The number of users actually removed.

        """
        return self._reconcile(group_id, member_ids, adding=False)
