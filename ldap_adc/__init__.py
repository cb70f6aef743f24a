__version__ = "1.0.0"

from .client import Client
from .config import BindAccount, Config, GroupsConfig, UsersConfig, render_filter
from .db import CallHistory, LDAPCallRecord, ObjectStore
from .directory import DirectoryCapability, Entry, PagingState, SearchSpec
from .exceptions import (
    ADCError,
    BatchResolutionError,
    ConfigurationError,
    GroupNotFoundError,
    IncompleteMembersError,
    PagingLimitExceeded,
    SessionFailedError,
    ValidationError,
)
from .fixture import FakeDirectory
from .live import LDAPDirectory
from .mapper import EntryMapper
from .models import (
    GetGroupArgs,
    GetUserArgs,
    Group,
    GroupMember,
    MembershipDelta,
    User,
    UserGroup,
)
from .paging import PaginatedSearchAggregator
from .reconciler import MembershipReconciler
from .servers.active_directory import ActiveDirectoryStore
from .session import SessionManager, SessionState
from .unittest import DirectoryFixtureMixin
