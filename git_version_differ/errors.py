"""
Error types raised by the version differ.

Resolution and range-fetch errors are fatal to a run; file lookup and
callback errors are recovered locally by the caller that catches them.
"""


class DifferError(RuntimeError):
    pass


class InvalidRepositoryUrl(DifferError):
    pass


class ReferenceNotFound(DifferError):
    def __init__(self, label: str) -> None:
        super().__init__(f"Could not find tag or commit: {label}")
        self.label = label


class FetchFailed(DifferError):
    pass


class FileLookupFailed(DifferError):
    def __init__(self, sha: str, reason: str) -> None:
        super().__init__(f"Could not get files for commit {sha}: {reason}")
        self.sha = sha


class CallbackFailed(DifferError):
    pass


class ConsumerDisconnected(CallbackFailed):
    """Raised by a delivery sink whose consumer has gone away."""
