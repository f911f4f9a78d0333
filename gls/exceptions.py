class GitlabSearchError(Exception):
    """
    Base exception for gitlab-search errors.

    Everything derived from it is fatal for the command being run: the CLI
    prints the message and exits with a non-zero status. Per-project search
    failures are not exceptions, they are recorded as ``SearchFailure``.
    """
    pass


class ConfigurationError(GitlabSearchError):
    pass


class RegistryFileError(ConfigurationError):
    """The instance registry file can't be read or has an unexpected shape."""
    pass


class NoInstancesConfiguredError(ConfigurationError):
    def __init__(self) -> None:
        super().__init__("No GitLab instances configured. Use 'config' command to add one.")


class InstanceNotFoundError(ConfigurationError):
    def __init__(self, name: str) -> None:
        super().__init__(f"GitLab instance '{name}' not found in config")
        self.name = name


class UsageError(GitlabSearchError):
    pass


class NoProjectsError(GitlabSearchError):
    def __init__(self) -> None:
        super().__init__("No projects found to search in")


class ProjectListingError(GitlabSearchError):
    """
    Listing projects failed.

    Listing is all-or-nothing: no partial project list is ever returned
    alongside this error.
    """
    pass


class ConnectionCheckError(GitlabSearchError):
    pass
