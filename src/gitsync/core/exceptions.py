"""Error taxonomy for trigger handling and deployment pipelines.

Fatal pipeline errors (clone, pull, install, build) abort the pipeline.
``LifecycleError`` is recorded per script and never flips the pipeline
outcome.
"""


class GitSyncError(Exception):
    """Base class for all GitSync errors."""

    pass


class ConfigError(GitSyncError):
    """Raised when the deployment file is missing or invalid."""

    pass


class VerificationError(GitSyncError):
    """Raised when a webhook fails signature or token verification."""

    pass


class PayloadError(GitSyncError):
    """Raised when a webhook body cannot be decoded."""

    pass


class GitError(GitSyncError):
    """Error during version-control operations."""

    pass


class CloneError(GitError):
    """Raised when a repository cannot be cloned."""

    pass


class PullError(GitError):
    """Raised when fetching or fast-forwarding the tracked branch fails."""

    pass


class InstallError(GitSyncError):
    """Raised when the package manager exits with an error."""

    pass


class BuildError(GitSyncError):
    """Raised when a build command fails."""

    def __init__(self, message: str, command: str, exit_code: int | None = None):
        super().__init__(message)
        self.command = command
        self.exit_code = exit_code


class LifecycleError(GitSyncError):
    """Raised when the process manager rejects a stop/start/register/restart call."""

    def __init__(self, message: str, script: str, action: str):
        super().__init__(message)
        self.script = script
        self.action = action
