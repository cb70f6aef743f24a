from collections.abc import Mapping, Sequence

from case_insensitive_dict import CaseInsensitiveDict

# ====================================
# Types
# ====================================

# LDAP records as python-ldap returns them
LDAPData = dict[str, list[bytes]]
CILDAPData = CaseInsensitiveDict[str, list[str]]
LDAPRecord = tuple[str, LDAPData]
LDAPSearchResult = list[LDAPRecord]
LDAPObjectStore = CaseInsensitiveDict[str, CILDAPData]
RawLDAPObjectStore = CaseInsensitiveDict[str, LDAPData]
Attrlist = CaseInsensitiveDict[str, str]

# Modlists
ModList = list[tuple[int, str, list[bytes] | None]]
AddModList = list[tuple[str, list[bytes]]]

# What callers hand to add() and modify(): attribute name -> values
AttributeValues = Mapping[str, Sequence[str | bytes]]

# unittest support
DirectoryFixtureList = str | list[str]
