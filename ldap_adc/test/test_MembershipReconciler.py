from concurrent.futures import ThreadPoolExecutor
import unittest
from unittest.mock import patch

import ldap
from ldap_adc import (
    BatchResolutionError,
    DirectoryFixtureMixin,
    Entry,
    GroupMember,
    GroupNotFoundError,
    IncompleteMembersError,
    MembershipDelta,
)


USER1 = 'OU=user1,DC=company,DC=com'
USER2 = 'OU=user2,DC=company,DC=com'
USER_TO_ADD = 'OU=userToAdd,DC=company,DC=com'
GROUP1 = 'OU=group1,DC=company,DC=com'
GROUP2 = 'OU=group2,DC=company,DC=com'
NESTED = 'CN=nested,OU=Groups,DC=company,DC=com'
CONTACT = 'CN=contact,OU=Contacts,DC=elsewhere,DC=com'


class TestMembershipDelta(unittest.TestCase):

    def test_empty_delta_is_false(self):
        self.assertFalse(MembershipDelta())
        self.assertTrue(MembershipDelta(to_add={USER1}))

    def test_apply_keeps_existing_order_and_appends_sorted(self):
        delta = MembershipDelta(to_add={'CN=c,DC=x', 'CN=a,DC=x'})
        self.assertEqual(
            delta.apply(['CN=z,DC=x', 'CN=b,DC=x']),
            ['CN=z,DC=x', 'CN=b,DC=x', 'CN=a,DC=x', 'CN=c,DC=x']
        )

    def test_apply_removes_case_insensitively(self):
        delta = MembershipDelta(to_remove={'cn=B,dc=X'})
        self.assertEqual(delta.apply(['CN=z,DC=x', 'CN=b,DC=x']), ['CN=z,DC=x'])

    def test_apply_does_not_duplicate(self):
        delta = MembershipDelta(to_add={'cn=Z,dc=X'})
        self.assertEqual(delta.apply(['CN=z,DC=x']), ['CN=z,DC=x'])


class ReconcilerTestCase(DirectoryFixtureMixin, unittest.TestCase):

    directory_fixtures = 'company.json'

    def member_values(self, dn):
        return self.store.get(dn).get('member', [])

    def searches_for(self, text):
        return [
            call for call in self.directory.calls.filter_calls('search')
            if text.lower() in call.args['spec'].filterstr.lower()
        ]


class TestMembershipReconciler_add(ReconcilerTestCase):

    def test_fixture_membership(self):
        group = self.client.get_group(id='group1')
        self.assertEqual(group.members, [GroupMember(USER1, 'user1')])

    def test_add_writes_full_member_list_once(self):
        self.assertEqual(self.client.add_group_members('group2', 'userToAdd'), 1)
        self.assertEqual(self.directory.calls.names.count('modify'), 1)
        self.assertDirectoryMethodCalled(
            'modify', {'dn': GROUP2, 'replacements': {'member': [USER2, USER_TO_ADD]}}
        )
        self.assertEqual(
            self.member_values(GROUP2), [USER2.encode('utf-8'), USER_TO_ADD.encode('utf-8')]
        )

    def test_added_user_sees_the_group(self):
        self.client.add_group_members('group2', 'userToAdd')
        user = self.client.get_user(id='userToAdd')
        self.assertTrue(user.is_group_member('group2'))
        self.assertIn(USER_TO_ADD, self.client.get_group(id='group2').members_dn())

    def test_add_is_idempotent(self):
        self.assertEqual(self.client.add_group_members('group2', 'userToAdd'), 1)
        self.assertEqual(self.client.add_group_members('group2', 'userToAdd'), 0)
        self.assertEqual(self.directory.calls.names.count('modify'), 1)

    def test_adding_existing_member_writes_nothing(self):
        self.assertEqual(self.client.add_group_members('group1', 'user1'), 0)
        self.assertDirectoryMethodNotCalled('modify')

    def test_add_many(self):
        self.assertEqual(self.client.add_group_members('group1', 'user2', 'userToAdd', 'user1'), 2)
        members = [v.decode('utf-8') for v in self.member_values(GROUP1)]
        self.assertEqual(members[0], USER1)
        self.assertEqual(sorted(members[1:]), sorted([USER2, USER_TO_ADD]))

    def test_duplicate_ids_count_once(self):
        self.assertEqual(self.client.add_group_members('group2', 'userToAdd', 'userToAdd'), 1)
        self.assertEqual(len(self.searches_for('sAMAccountName=userToAdd')), 1)
        self.assertEqual(self.member_values(GROUP2).count(USER_TO_ADD.encode('utf-8')), 1)

    def test_unknown_ids_are_skipped(self):
        self.assertEqual(self.client.add_group_members('group2', 'nobody', 'userToAdd'), 1)
        self.assertEqual(
            self.member_values(GROUP2), [USER2.encode('utf-8'), USER_TO_ADD.encode('utf-8')]
        )

    def test_only_unknown_ids_writes_nothing(self):
        self.assertEqual(self.client.add_group_members('group2', 'nobody'), 0)
        self.assertDirectoryMethodNotCalled('modify')

    def test_no_ids_writes_nothing(self):
        self.assertEqual(self.client.add_group_members('group2'), 0)
        self.assertDirectoryMethodNotCalled('modify')

    def test_ids_with_the_same_user_count_once(self):
        self.assertEqual(self.client.add_group_members('group1', 'notUniq', 'NOTUNIQ'), 1)
        self.assertIn(b'OU=notUniq1,DC=company,DC=com', self.member_values(GROUP1))

    def test_one_worker_per_distinct_id(self):
        with patch('ldap_adc.reconciler.ThreadPoolExecutor', wraps=ThreadPoolExecutor) as executor:
            self.client.add_group_members('group1', 'user2', 'userToAdd', 'user2', 'nobody')
        self.assertEqual(executor.call_args.kwargs['max_workers'], 3)

    def test_lookups_skip_the_groups_search(self):
        self.client.add_group_members('group2', 'userToAdd')
        # the group lookup and the one user lookup
        self.assertEqual(self.directory.calls.names.count('search'), 2)

    def test_group_lookup_reads_member_attribute(self):
        self.client.add_group_members('group2', 'userToAdd')
        spec = self.directory.calls.filter_calls('search')[0].args['spec']
        self.assertEqual(spec.attributes, ('sAMAccountName', 'member'))
        self.assertIn('sAMAccountName=group2', spec.filterstr)


class TestMembershipReconciler_remove(ReconcilerTestCase):

    def test_remove_member(self):
        self.assertEqual(self.client.delete_group_members('group1', 'user1'), 1)
        self.assertDirectoryMethodCalled(
            'modify', {'dn': GROUP1, 'replacements': {'member': []}}
        )
        self.assertEqual(self.member_values(GROUP1), [])
        self.assertEqual(self.client.get_user(id='user1').groups, [])

    def test_removing_non_member_writes_nothing(self):
        self.assertEqual(self.client.delete_group_members('group1', 'user2'), 0)
        self.assertDirectoryMethodNotCalled('modify')
        self.assertEqual(self.member_values(GROUP1), [USER1.encode('utf-8')])

    def test_remove_keeps_other_members(self):
        self.client.add_group_members('group1', 'user2', 'userToAdd')
        self.assertEqual(self.client.delete_group_members('group1', 'user2', 'nobody'), 1)
        self.assertEqual(
            self.member_values(GROUP1), [USER1.encode('utf-8'), USER_TO_ADD.encode('utf-8')]
        )

    def test_add_then_remove_restores_members(self):
        self.client.add_group_members('group2', 'userToAdd')
        self.assertEqual(self.client.delete_group_members('group2', 'userToAdd'), 1)
        self.assertEqual(self.member_values(GROUP2), [USER2.encode('utf-8')])


class TestMembershipReconciler_errors(ReconcilerTestCase):

    def test_unknown_group_raises_GroupNotFoundError(self):
        with self.assertRaises(GroupNotFoundError) as cm:
            self.client.add_group_members('noSuchGroup', 'user1')
        self.assertEqual(cm.exception.group_id, 'noSuchGroup')
        self.assertEqual(str(cm.exception), "group 'noSuchGroup' not found by ID")
        self.assertEqual(len(self.searches_for('sAMAccountName=user1')), 0)
        self.assertDirectoryMethodNotCalled('modify')

    def test_failed_lookup_abandons_batch(self):
        self.directory.fail(
            'search', ldap.OPERATIONS_ERROR({'desc': 'Operations error'}), match='entryForErr'
        )
        with self.assertRaises(BatchResolutionError) as cm:
            self.client.add_group_members('group2', 'userToAdd', 'entryForErr', 'user1')
        self.assertEqual(cm.exception.member_id, 'entryForErr')
        self.assertEqual(cm.exception.group_id, 'group2')
        self.assertIsInstance(cm.exception.__cause__, ldap.OPERATIONS_ERROR)
        self.assertDirectoryMethodNotCalled('modify')
        self.assertEqual(self.member_values(GROUP2), [USER2.encode('utf-8')])

    def test_every_lookup_finishes_before_failing(self):
        self.directory.fail(
            'search', ldap.OPERATIONS_ERROR({'desc': 'Operations error'}), match='entryForErr'
        )
        with self.assertRaises(BatchResolutionError):
            self.client.add_group_members('group2', 'entryForErr', 'userToAdd', 'user1')
        self.assertEqual(len(self.searches_for('sAMAccountName=userToAdd')), 1)
        self.assertEqual(len(self.searches_for('sAMAccountName=user1')), 1)

    def test_first_failure_in_id_order_is_reported(self):
        self.directory.fail('search', ldap.OPERATIONS_ERROR({'desc': 'Operations error'}), match='user2')
        self.directory.fail('search', ldap.OPERATIONS_ERROR({'desc': 'Operations error'}), match='entryForErr')
        with self.assertRaises(BatchResolutionError) as cm:
            self.client.delete_group_members('group2', 'entryForErr', 'user2')
        self.assertEqual(cm.exception.member_id, 'entryForErr')

    def test_lookup_survives_a_dropped_connection(self):
        self.directory.fail(
            'search',
            ldap.SERVER_DOWN({'desc': "Can't contact LDAP server"}),
            match='userToReconnect',
            times=1,
        )
        self.assertEqual(self.client.add_group_members('group2', 'userToReconnect'), 1)
        self.assertEqual(self.directory.calls.names.count('bind'), 2)
        self.assertIn(b'OU=userToReconnect,DC=company,DC=com', self.member_values(GROUP2))

    def test_write_failure_reaches_caller(self):
        self.directory.fail('modify', ldap.UNWILLING_TO_PERFORM({'desc': 'Unwilling'}))
        with self.assertRaises(ldap.UNWILLING_TO_PERFORM):
            self.client.add_group_members('group2', 'userToAdd')
        self.assertEqual(self.member_values(GROUP2), [USER2.encode('utf-8')])


class TestMembershipReconciler_non_user_members(ReconcilerTestCase):

    def setUp(self):
        super().setUp()
        self.store.create(
            NESTED,
            [
                ('objectClass', [b'top', b'group']),
                ('cn', [b'nested']),
                ('sAMAccountName', [b'nested']),
            ]
        )
        self.store.update(
            GROUP2,
            [(ldap.MOD_ADD, 'member', [NESTED.encode('utf-8'), CONTACT.encode('utf-8')])]
        )

    def test_members_search_only_finds_users(self):
        self.assertEqual(self.client.get_group(id='group2').members_dn(), [USER2])

    def test_add_keeps_non_user_members_in_order(self):
        self.assertEqual(self.client.add_group_members('group2', 'userToAdd'), 1)
        self.assertDirectoryMethodCalled(
            'modify',
            {'dn': GROUP2, 'replacements': {'member': [USER2, NESTED, CONTACT, USER_TO_ADD]}}
        )
        self.assertIn(GROUP2.encode('utf-8'), self.store.get(NESTED)['memberOf'])

    def test_remove_keeps_non_user_members(self):
        self.assertEqual(self.client.delete_group_members('group2', 'user2'), 1)
        self.assertEqual(
            self.member_values(GROUP2), [NESTED.encode('utf-8'), CONTACT.encode('utf-8')]
        )
        self.assertIn(GROUP2.encode('utf-8'), self.store.get(NESTED)['memberOf'])

    def test_group_member_is_not_a_user_id(self):
        self.assertEqual(self.client.delete_group_members('group2', 'nested'), 0)
        self.assertDirectoryMethodNotCalled('modify')


class TestMembershipReconciler_ranged_members(ReconcilerTestCase):

    def test_ranged_member_attribute_raises_IncompleteMembersError(self):
        entry = Entry(
            GROUP2,
            {'sAMAccountName': ['group2'], 'member;range=0-1499': [USER2]}
        )
        with patch.object(self.client, 'search_entry', return_value=entry):
            with self.assertRaises(IncompleteMembersError) as cm:
                self.client.add_group_members('group2', 'userToAdd')
        self.assertEqual(cm.exception.dn, GROUP2)
        self.assertEqual(cm.exception.attribute, 'member;range=0-1499')
        self.assertDirectoryMethodNotCalled('modify')
