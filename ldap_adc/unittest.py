from __future__ import annotations

import sys
from copy import deepcopy
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar, cast

from .client import Client
from .config import Config
from .db import ObjectStore
from .fixture import FakeDirectory
from .servers.active_directory import ActiveDirectoryStore

if TYPE_CHECKING:
    from .types import DirectoryFixtureList


#: The configuration :py:class:`DirectoryFixtureMixin` uses unless told
#: otherwise.  It matches the layout of ``DC=company,DC=com`` fixtures.
DEFAULT_CONFIG: dict[str, Any] = {
    "url": "ldap://dc.company.com",
    "bind": {"dn": "OU=validUser,DC=company,DC=com", "password": "validPass"},
    "users": {"search_base": "DC=company,DC=com"},
    "groups": {"search_base": "DC=company,DC=com"},
    "timeout": 5,
    "page_size": 2,
}


class DirectoryFixtureMixin:
    """
    A mixin for use with :py:class:`unittest.TestCase`.  Before each test it
    builds a fresh :py:class:`ldap_adc.fixture.FakeDirectory` over a private
    copy of our fixture data, and a :py:class:`ldap_adc.client.Client` that
    talks to it.  Nothing is patched: the fake directory is handed to the
    client.

    :py:attr:`directory_fixtures` names one or more JSON files containing
    LDAP records to load via :py:meth:`ldap_adc.db.ObjectStore.load_objects`.
    Relative paths are resolved against the directory of the test module::

        class TestMyStuff(DirectoryFixtureMixin, unittest.TestCase):

            directory_fixtures = 'company.json'

            def test_lookup(self):
                user = self.client.get_user(id='user1')
                self.assertDirectoryMethodCalled('search')

    The fixture files are loaded once per test class, in
    :py:meth:`setUpClass`; each test gets a :py:func:`copy.deepcopy` of the
    result, so tests can't see each other's writes.
    """

    #: The filenames of fixtures to load into our store
    directory_fixtures: ClassVar[DirectoryFixtureList | None] = None
    #: The kind of :py:class:`ObjectStore` to build
    store_class: ClassVar[type[ObjectStore]] = ActiveDirectoryStore
    #: The client configuration, as a dict for :py:meth:`Config.from_dict`
    client_config: ClassVar[dict[str, Any]] = DEFAULT_CONFIG
    #: Set to ``False`` to emulate a server without the paged results control
    paging_supported: ClassVar[bool] = True

    #: The :py:class:`ObjectStore` built by our :py:meth:`setUpClass`
    fixture_store: ClassVar[ObjectStore]

    def __init__(self, *args, **kwargs) -> None:
        #: Our private copy of :py:attr:`fixture_store`, built by :py:meth:`setUp`
        self.store: ObjectStore
        #: The :py:class:`FakeDirectory` created by :py:meth:`setUp`
        self.directory: FakeDirectory
        #: The :py:class:`Client` created by :py:meth:`setUp`
        self.client: Client
        super().__init__(*args, **kwargs)

    @classmethod
    def resolve_file(cls, filename: str) -> Path:
        """
        Given ``filename``, if that filename is a non-absolute path, resolve
        that filename to an absolute path under the folder in which our
        subclass' file resides.  If ``filename`` is an absolute path, don't
        change it.

        Raises:
            FileNotFoundError: the fixture file did not exist

        """
        full_path = Path(filename)
        if not full_path.is_absolute():
            dirname = Path(cast("str", sys.modules[cls.__module__].__file__)).parent
            full_path = dirname / filename
        if not full_path.exists():
            msg = f"{full_path} does not exist"
            raise FileNotFoundError(msg)
        return full_path

    @classmethod
    def load_store(cls) -> ObjectStore:
        """
        Build an :py:class:`ObjectStore` from :py:attr:`directory_fixtures`.

        Note:
            If you want to populate the store some other way, this is the
            classmethod to override.

        """
        store = cls.store_class()
        fixtures = cls.directory_fixtures or []
        if isinstance(fixtures, str):
            fixtures = [fixtures]
        for filename in fixtures:
            store.load_objects(cls.resolve_file(filename))
        return store

    @classmethod
    def setUpClass(cls) -> None:
        super().setUpClass()  # type: ignore[misc]
        cls.fixture_store = cls.load_store()

    @classmethod
    def tearDownClass(cls) -> None:
        del cls.fixture_store
        super().tearDownClass()  # type: ignore[misc]

    def setUp(self) -> None:
        super().setUp()  # type: ignore[misc]
        self.store = deepcopy(self.fixture_store)
        self.directory = FakeDirectory(self.store, paging_supported=self.paging_supported)
        self.client = Client(Config.from_dict(self.client_config), directory=self.directory)

    # Asserts

    def assertDirectoryMethodCalled(  # noqa: N802
        self, api_name: str, arguments: dict[str, Any] | None = None
    ) -> None:
        """
        Assert that a :py:class:`FakeDirectory` method was called, possibly
        specifying the specific arguments it should have been called with.

        Args:
            api_name: the name of the method to look for (e.g. ``modify``)

        Keyword Args:
            arguments: if given, assert that the call exists AND was called
                with this set of arguments.  See
                :py:class:`ldap_adc.db.LDAPCallRecord` for how the
                ``arguments`` dict should be constructed.

        """
        if arguments is None:
            self.assertIn(api_name, self.directory.calls.names)  # type: ignore[attr-defined]
            return
        for call in self.directory.calls.filter_calls(api_name):
            if call.args == arguments:
                return
        msg = f'No call for "{api_name}" with args {arguments} found.'
        self.fail(msg)  # type: ignore[attr-defined]

    def assertDirectoryMethodNotCalled(self, api_name: str) -> None:  # noqa: N802
        self.assertNotIn(api_name, self.directory.calls.names)  # type: ignore[attr-defined]

    def assertDirectoryMethodCalledAfter(  # noqa: N802
        self, api_name: str, target_api_name: str
    ) -> None:
        """
        Assert that ``api_name`` was called after ``target_api_name`` was
        first called.
        """
        self.assertDirectoryMethodCalled(target_api_name)
        self.assertDirectoryMethodCalled(api_name)
        api_names = self.directory.calls.names
        first = api_names.index(target_api_name)
        self.assertIn(api_name, api_names[first + 1 :])  # type: ignore[attr-defined]
