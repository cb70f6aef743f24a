from .active_directory import ActiveDirectoryStore  # noqa: F401
