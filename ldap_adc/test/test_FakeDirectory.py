from pathlib import Path
import unittest

import ldap
from ldap_adc import ActiveDirectoryStore, FakeDirectory, PagingState, SearchSpec


PERSONS = SearchSpec('DC=company,DC=com', '(objectClass=person)', attributes=('cn',))


class FakeDirectoryMixin:

    paging_supported = True

    def setUp(self):
        store = ActiveDirectoryStore()
        store.load_objects(Path(__file__).parent / 'company.json')
        self.directory = FakeDirectory(store, paging_supported=self.paging_supported)


class BoundMixin(FakeDirectoryMixin):

    def setUp(self):
        super().setUp()
        self.directory.bind('OU=validUser,DC=company,DC=com', 'validPass')


class TestFakeDirectory_bind(FakeDirectoryMixin, unittest.TestCase):

    def test_bind_with_right_password_works(self):
        self.directory.bind('OU=validUser,DC=company,DC=com', 'validPass')
        self.assertEqual(self.directory.bound_dn, 'OU=validUser,DC=company,DC=com')

    def test_bind_dn_is_case_insensitive(self):
        self.directory.bind('ou=VALIDUSER,dc=company,dc=com', 'validPass')
        self.assertEqual(self.directory.bound_dn, 'ou=VALIDUSER,dc=company,dc=com')

    def test_wrong_password_raises_INVALID_CREDENTIALS(self):
        with self.assertRaises(ldap.INVALID_CREDENTIALS):
            self.directory.bind('OU=validUser,DC=company,DC=com', 'wrong')
        self.assertIsNone(self.directory.bound_dn)

    def test_empty_password_raises_INVALID_CREDENTIALS(self):
        with self.assertRaises(ldap.INVALID_CREDENTIALS):
            self.directory.bind('OU=validUser,DC=company,DC=com', '')

    def test_unknown_dn_raises_INVALID_CREDENTIALS(self):
        with self.assertRaises(ldap.INVALID_CREDENTIALS):
            self.directory.bind('OU=nobody,DC=company,DC=com', 'validPass')

    def test_user_without_password_cannot_bind(self):
        with self.assertRaises(ldap.INVALID_CREDENTIALS):
            self.directory.bind('OU=user2,DC=company,DC=com', '')

    def test_operations_without_bind_raise_INSUFFICIENT_ACCESS(self):
        with self.assertRaises(ldap.INSUFFICIENT_ACCESS):
            self.directory.search(PERSONS)
        with self.assertRaises(ldap.INSUFFICIENT_ACCESS):
            self.directory.modify('OU=user2,DC=company,DC=com', {'displayName': ['x']})

    def test_unbind_drops_bind(self):
        self.directory.bind('OU=validUser,DC=company,DC=com', 'validPass')
        self.directory.unbind()
        self.assertIsNone(self.directory.bound_dn)
        with self.assertRaises(ldap.INSUFFICIENT_ACCESS):
            self.directory.search(PERSONS)


class TestFakeDirectory_search(BoundMixin, unittest.TestCase):

    def test_unpaged_search_returns_everything(self):
        entries, paging = self.directory.search(PERSONS)
        self.assertIsNone(paging)
        self.assertEqual(len(entries), 7)
        self.assertEqual(entries[0].dn, 'OU=user1,DC=company,DC=com')
        self.assertEqual(entries[0].attributes, {'cn': ['user1']})

    def test_paged_search_hands_out_offset_cookies(self):
        entries, paging = self.directory.search(PERSONS, paging=PagingState(3))
        self.assertEqual([e.dn for e in entries][0], 'OU=user1,DC=company,DC=com')
        self.assertEqual(len(entries), 3)
        self.assertEqual(paging, PagingState(3, b'3'))
        entries, paging = self.directory.search(PERSONS, paging=paging)
        self.assertEqual(len(entries), 3)
        self.assertEqual(paging.cookie, b'6')
        entries, paging = self.directory.search(PERSONS, paging=paging)
        self.assertEqual([e.dn for e in entries], ['OU=notUniq2,DC=company,DC=com'])
        self.assertTrue(paging.done)

    def test_exact_last_page_returns_empty_cookie(self):
        spec = SearchSpec('DC=company,DC=com', '(objectClass=group)')
        entries, paging = self.directory.search(spec, paging=PagingState(3))
        self.assertEqual(len(entries), 3)
        self.assertTrue(paging.done)

    def test_no_match_returns_empty_list(self):
        spec = SearchSpec('DC=company,DC=com', '(sAMAccountName=nobody)')
        entries, paging = self.directory.search(spec, paging=PagingState(3))
        self.assertEqual(entries, [])
        self.assertTrue(paging.done)

    def test_bad_filter_raises_FILTER_ERROR(self):
        with self.assertRaises(ldap.FILTER_ERROR):
            self.directory.search(SearchSpec('DC=company,DC=com', '(cn=user1'))


class TestFakeDirectory_search_without_paging_support(BoundMixin, unittest.TestCase):

    paging_supported = False

    def test_paging_request_is_ignored(self):
        entries, paging = self.directory.search(PERSONS, paging=PagingState(3))
        self.assertEqual(len(entries), 7)
        self.assertIsNone(paging)


class TestFakeDirectory_writes(BoundMixin, unittest.TestCase):

    def test_add_creates_entry(self):
        self.directory.add(
            'OU=user9,DC=company,DC=com',
            {'objectClass': ['top', 'person'], 'sAMAccountName': 'user9'},
        )
        data = self.directory.store.get('OU=user9,DC=company,DC=com')
        self.assertEqual(data['sAMAccountName'], [b'user9'])
        self.assertEqual(data['objectClass'], [b'top', b'person'])

    def test_add_existing_raises_ALREADY_EXISTS(self):
        with self.assertRaises(ldap.ALREADY_EXISTS):
            self.directory.add('OU=user1,DC=company,DC=com', {'cn': ['user1']})

    def test_modify_replaces_values(self):
        self.directory.modify('OU=user2,DC=company,DC=com', {'displayName': ['Second User']})
        data = self.directory.store.get('OU=user2,DC=company,DC=com')
        self.assertEqual(data['displayName'], [b'Second User'])

    def test_modify_with_empty_list_removes_attribute(self):
        self.directory.modify('OU=user2,DC=company,DC=com', {'mail': []})
        self.assertNotIn('mail', self.directory.store.get('OU=user2,DC=company,DC=com'))

    def test_modify_missing_raises_NO_SUCH_OBJECT(self):
        with self.assertRaises(ldap.NO_SUCH_OBJECT):
            self.directory.modify('OU=nobody,DC=company,DC=com', {'cn': ['x']})

    def test_modify_dn_renames(self):
        self.directory.modify_dn('OU=group2,DC=company,DC=com', 'OU=group22')
        self.assertTrue(self.directory.store.exists('OU=group22,DC=company,DC=com'))
        self.assertFalse(self.directory.store.exists('OU=group2,DC=company,DC=com'))


class TestFakeDirectory_fail(BoundMixin, unittest.TestCase):

    def test_failure_is_raised_every_time_by_default(self):
        self.directory.fail('search', ldap.OTHER({'desc': 'Other'}))
        for _ in range(3):
            with self.assertRaises(ldap.OTHER):
                self.directory.search(PERSONS)

    def test_failure_with_times_stops_failing(self):
        self.directory.fail('search', ldap.OTHER({'desc': 'Other'}), times=1)
        with self.assertRaises(ldap.OTHER):
            self.directory.search(PERSONS)
        entries, _ = self.directory.search(PERSONS)
        self.assertEqual(len(entries), 7)

    def test_failure_with_match_only_fails_matching_calls(self):
        self.directory.fail('search', ldap.OTHER({'desc': 'Other'}), match='ENTRYFORERR')
        entries, _ = self.directory.search(
            SearchSpec('DC=company,DC=com', '(sAMAccountName=user1)')
        )
        self.assertEqual(len(entries), 1)
        with self.assertRaises(ldap.OTHER):
            self.directory.search(
                SearchSpec('DC=company,DC=com', '(sAMAccountName=entryForErr)')
            )

    def test_match_on_dn_for_writes(self):
        self.directory.fail('modify', ldap.UNWILLING_TO_PERFORM({}), match='user2')
        self.directory.modify('OU=user1,DC=company,DC=com', {'displayName': ['x']})
        with self.assertRaises(ldap.UNWILLING_TO_PERFORM):
            self.directory.modify('OU=user2,DC=company,DC=com', {'displayName': ['x']})

    def test_connection_failure_drops_bind(self):
        self.directory.fail('search', ldap.SERVER_DOWN({'desc': "Can't contact LDAP server"}), times=1)
        with self.assertRaises(ldap.SERVER_DOWN):
            self.directory.search(PERSONS)
        self.assertIsNone(self.directory.bound_dn)
        with self.assertRaises(ldap.INSUFFICIENT_ACCESS):
            self.directory.search(PERSONS)

    def test_other_failures_keep_bind(self):
        self.directory.fail('search', ldap.OTHER({'desc': 'Other'}), times=1)
        with self.assertRaises(ldap.OTHER):
            self.directory.search(PERSONS)
        self.assertEqual(self.directory.bound_dn, 'OU=validUser,DC=company,DC=com')

    def test_bind_failure(self):
        self.directory.fail('bind', ldap.SERVER_DOWN({'desc': "Can't contact LDAP server"}))
        with self.assertRaises(ldap.SERVER_DOWN):
            self.directory.bind('OU=validUser,DC=company,DC=com', 'validPass')


class TestFakeDirectory_calls(FakeDirectoryMixin, unittest.TestCase):

    def test_calls_are_recorded_in_order(self):
        self.directory.bind('OU=validUser,DC=company,DC=com', 'validPass')
        self.directory.search(PERSONS, paging=PagingState(10))
        self.directory.unbind()
        self.assertEqual(self.directory.calls.names, ['bind', 'search', 'unbind'])

    def test_call_arguments_include_defaults(self):
        self.directory.bind('OU=validUser,DC=company,DC=com', 'validPass')
        self.directory.search(PERSONS)
        call = self.directory.calls.filter_calls('search')[0]
        self.assertEqual(call.args, {'spec': PERSONS, 'paging': None})

    def test_failed_calls_are_recorded(self):
        with self.assertRaises(ldap.INVALID_CREDENTIALS):
            self.directory.bind('OU=validUser,DC=company,DC=com', 'wrong')
        self.assertEqual(
            self.directory.calls.filter_calls('bind')[0].args,
            {'dn': 'OU=validUser,DC=company,DC=com', 'password': 'wrong'}
        )
