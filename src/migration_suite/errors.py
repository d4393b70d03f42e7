"""Exception types shared across the Migration Suite."""


class MigrationError(Exception):
    """Base class for all Migration Suite errors."""


class ConfigError(MigrationError):
    """Raised when required configuration is missing or unusable.

    Attributes:
        missing (list[str]): The configuration keys that were not set.
    """

    def __init__(self, message: str, missing: list[str] | None = None):
        super().__init__(message)
        self.missing = missing or []


class RepositoryNotFoundError(MigrationError):
    """Raised when a repository cannot be located in any search directory."""


class ArchiveError(MigrationError):
    """Raised when an archive cannot be created, found or extracted."""


class ManifestError(MigrationError):
    """Raised when an image list contains a malformed entry."""


class GitError(MigrationError, RuntimeError):
    """Raised when a git command exits with a non-zero status.

    Attributes:
        args_list (list[str]): The git arguments that were executed.
        returncode (int): The process exit code.
        stderr (str): The captured standard error output.
    """

    def __init__(self, args_list: list[str], returncode: int, stderr: str = ""):
        self.args_list = args_list
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        command = " ".join(args_list[:2])
        super().__init__(f"Git error ({command}, exit {returncode}): {self.stderr}")


class EmptyBundleError(GitError):
    """Raised when git refuses to write a bundle because the range is empty."""
