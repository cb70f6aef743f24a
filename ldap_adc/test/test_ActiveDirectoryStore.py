from datetime import datetime, timezone
from pathlib import Path
import unittest

import ldap
from ldap_adc import ActiveDirectoryStore
from ldap_adc.servers.active_directory import decode_unicode_pwd, generalized_time


USER1 = 'OU=user1,DC=company,DC=com'
USER2 = 'OU=user2,DC=company,DC=com'
GROUP1 = 'OU=group1,DC=company,DC=com'
GROUP2 = 'OU=group2,DC=company,DC=com'


class CompanyStoreMixin:

    def setUp(self):
        self.store = ActiveDirectoryStore()
        self.store.load_objects(Path(__file__).parent / 'company.json')


class TestActiveDirectoryStore_computed_attributes(CompanyStoreMixin, unittest.TestCase):

    def test_distinguishedName_is_set(self):
        self.assertEqual(self.store.get(USER1)['distinguishedName'], [USER1.encode('utf-8')])

    def test_whenCreated_and_whenChanged_are_set(self):
        data = self.store.get(USER1)
        self.assertEqual(len(data['whenCreated']), 1)
        self.assertTrue(data['whenCreated'][0].endswith(b'.0Z'))
        self.assertEqual(len(data['whenChanged']), 1)

    def test_whenCreated_survives_updates(self):
        data = self.store.copy(USER1)
        data['whenCreated'] = [b'20000101000000.0Z']
        self.store._set(USER1, data)
        self.store.update(USER1, [(ldap.MOD_REPLACE, 'displayName', [b'Someone'])])
        self.assertEqual(self.store.get(USER1)['whenCreated'], [b'20000101000000.0Z'])

    def test_memberOf_is_computed_from_group_members(self):
        self.assertEqual(self.store.get(USER1)['memberOf'], [GROUP1.encode('utf-8')])
        self.assertEqual(self.store.get(USER2)['memberOf'], [GROUP2.encode('utf-8')])
        self.assertNotIn('memberOf', self.store.get('OU=userToAdd,DC=company,DC=com'))

    def test_memberOf_is_searchable(self):
        results = self.store.search_subtree(
            'DC=company,DC=com', f'(&(objectClass=person)(memberOf={GROUP1}))'
        )
        self.assertEqual([dn for dn, _ in results], [USER1])


class TestActiveDirectoryStore_membership(CompanyStoreMixin, unittest.TestCase):

    def test_adding_member_updates_memberOf(self):
        self.store.update(GROUP2, [(ldap.MOD_ADD, 'member', [USER1.encode('utf-8')])])
        self.assertEqual(
            sorted(self.store.get(USER1)['memberOf']),
            sorted([GROUP1.encode('utf-8'), GROUP2.encode('utf-8')])
        )

    def test_removing_member_updates_memberOf(self):
        self.store.update(GROUP1, [(ldap.MOD_REPLACE, 'member', [])])
        self.assertNotIn('member', self.store.get(GROUP1))
        self.assertNotIn('memberOf', self.store.get(USER1))

    def test_replacing_members_updates_both_sides(self):
        self.store.update(GROUP1, [(ldap.MOD_REPLACE, 'member', [USER2.encode('utf-8')])])
        self.assertNotIn('memberOf', self.store.get(USER1))
        self.assertEqual(
            sorted(self.store.get(USER2)['memberOf']),
            sorted([GROUP1.encode('utf-8'), GROUP2.encode('utf-8')])
        )

    def test_deleting_user_removes_it_from_groups(self):
        self.store.delete(USER1)
        self.assertNotIn('member', self.store.get(GROUP1))

    def test_deleting_group_clears_memberOf(self):
        self.store.delete(GROUP2)
        self.assertNotIn('memberOf', self.store.get(USER2))

    def test_renaming_user_updates_member_values(self):
        newdn = self.store.rename(USER1, 'OU=user1renamed')
        self.assertEqual(newdn, 'OU=user1renamed,DC=company,DC=com')
        self.assertEqual(self.store.get(GROUP1)['member'], [newdn.encode('utf-8')])
        self.assertEqual(self.store.get(newdn)['memberOf'], [GROUP1.encode('utf-8')])
        self.assertEqual(self.store.get(newdn)['distinguishedName'], [newdn.encode('utf-8')])

    def test_renaming_group_updates_memberOf(self):
        newdn = self.store.rename(GROUP1, 'OU=group3')
        self.assertEqual(self.store.get(newdn)['member'], [USER1.encode('utf-8')])
        self.assertEqual(self.store.get(USER1)['memberOf'], [newdn.encode('utf-8')])


class TestActiveDirectoryStore_readonly_attributes(CompanyStoreMixin, unittest.TestCase):

    def test_update_of_memberOf_raises_UNWILLING_TO_PERFORM(self):
        with self.assertRaises(ldap.UNWILLING_TO_PERFORM):
            self.store.update(USER2, [(ldap.MOD_REPLACE, 'memberof', [GROUP1.encode('utf-8')])])
        self.assertEqual(self.store.get(USER2)['memberOf'], [GROUP2.encode('utf-8')])

    def test_update_of_distinguishedName_raises_UNWILLING_TO_PERFORM(self):
        with self.assertRaises(ldap.UNWILLING_TO_PERFORM):
            self.store.update(USER2, [(ldap.MOD_REPLACE, 'distinguishedName', [b'OU=x,DC=y'])])

    def test_create_with_whenCreated_raises_UNWILLING_TO_PERFORM(self):
        with self.assertRaises(ldap.UNWILLING_TO_PERFORM):
            self.store.create(
                'OU=user9,DC=company,DC=com',
                [('cn', [b'user9']), ('whenCreated', [b'20000101000000.0Z'])]
            )
        self.assertFalse(self.store.exists('OU=user9,DC=company,DC=com'))


class TestActiveDirectoryStore_unicodePwd(CompanyStoreMixin, unittest.TestCase):

    def test_unicodePwd_sets_userPassword(self):
        pwd = '"n3w Pass!"'.encode('utf-16-le')
        self.store.update(USER2, [(ldap.MOD_REPLACE, 'unicodePwd', [pwd])])
        data = self.store.get(USER2)
        self.assertEqual(data['userPassword'], [b'n3w Pass!'])
        self.assertNotIn('unicodePwd', data)

    def test_unquoted_unicodePwd_raises_UNWILLING_TO_PERFORM(self):
        with self.assertRaises(ldap.UNWILLING_TO_PERFORM):
            self.store.update(
                USER2, [(ldap.MOD_REPLACE, 'unicodePwd', ['n3wPass'.encode('utf-16-le')])]
            )
        self.assertNotIn('userPassword', self.store.get(USER2))

    def test_decode_unicode_pwd_rejects_odd_length(self):
        with self.assertRaises(ldap.UNWILLING_TO_PERFORM):
            decode_unicode_pwd(b'"\x00a')


class TestActiveDirectoryStore_generalized_time(unittest.TestCase):

    def test_format(self):
        when = datetime(2024, 10, 1, 12, 30, 5, tzinfo=timezone.utc)
        self.assertEqual(generalized_time(when), b'20241001123005.0Z')
