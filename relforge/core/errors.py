"""Exit codes for CLI commands.

The numeric values are process exit codes and must remain stable for CI
scripts that branch on them.
"""

from enum import IntEnum

__all__ = ["ErrorCode"]


class ErrorCode(IntEnum):
    """Exit codes for CLI commands.

    - 0: Success
    - 1: User error (bad config, contradictory options, impossible plan)
    - 2: Environment error (missing credentials, missing tools)
    - 3: Publish error (an entry ended in Failed)
    - 4: Network error (remote tag store unreachable)
    - 5: I/O error (config or plan file unreadable)
    """

    OK = 0
    USER_ERROR = 1
    ENV_ERROR = 2
    PUBLISH_ERROR = 3
    NETWORK_ERROR = 4
    IO_ERROR = 5

    def __str__(self) -> str:
        return self.name.lower().replace("_", " ")

    @property
    def is_success(self) -> bool:
        return self == ErrorCode.OK

    @property
    def is_error(self) -> bool:
        return self != ErrorCode.OK
