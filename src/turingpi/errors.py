"""Error kinds raised by the image preparation core."""

from typing import List, Optional, Sequence


class TuringPiError(Exception):
    """Base class for all turingpi errors."""


class InputInvalid(TuringPiError):
    """A preparation job or argument failed validation."""


class DaemonUnavailable(TuringPiError):
    """The container daemon could not be reached."""

    DAEMON_MISSING = "daemon-missing"
    CONTEXT_MISCONFIGURED = "context-misconfigured"

    def __init__(self, message: str, hint: str = DAEMON_MISSING):
        super().__init__(message)
        self.hint = hint


class ImageUnavailable(TuringPiError):
    """A worker image could not be pulled or built."""

    def __init__(self, image: str, reason: str):
        super().__init__(f"Image {image} unavailable: {reason}")
        self.image = image
        self.reason = reason


class ContainerLifecycleError(TuringPiError):
    """Create, start, stop or remove of a container failed."""

    def __init__(self, action: str, name: str, reason: str):
        super().__init__(f"Failed to {action} container {name}: {reason}")
        self.action = action
        self.name = name
        self.reason = reason


class NotReady(TuringPiError):
    """The container is not running and could not be started."""


class SessionClosed(TuringPiError):
    """The container session was already closed."""


class ToolFailure(TuringPiError):
    """A privileged tool exited with a non-zero status."""

    TAIL_LINES = 20

    def __init__(self, stage: str, argv: Sequence[str], exit_code: int, stderr: str = ""):
        self.stage = stage
        self.argv = list(argv)
        self.exit_code = exit_code
        self.stderr = stderr or ""
        super().__init__(
            f"{stage}: {' '.join(self.argv)} exited with {exit_code}: {self.stderr_tail}"
        )

    @property
    def stderr_tail(self) -> str:
        """Last lines of stderr."""
        lines = self.stderr.strip().splitlines()
        return "\n".join(lines[-self.TAIL_LINES:])


class UnsupportedLayout(TuringPiError):
    """The partition table of an image is not one we handle."""


class UnsupportedPrefix(TuringPiError):
    """The network prefix length has no known netmask."""

    def __init__(self, prefix: int):
        super().__init__(f"Unsupported prefix length /{prefix}")
        self.prefix = prefix


class VerificationMismatch(TuringPiError):
    """Read-back of a written path did not match what was written."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Verification failed for {path}: {reason}")
        self.path = path
        self.reason = reason


class MutationError(TuringPiError):
    """A mutation op failed; carries its position in the batch."""

    def __init__(self, index: int, kind: str, cause: BaseException):
        super().__init__(f"Mutation #{index} ({kind}) failed: {cause}")
        self.index = index
        self.kind = kind
        self.cause = cause


class OperationCancelled(TuringPiError):
    """The operation was cancelled by a process signal."""

    def __init__(self, signum: Optional[int] = None):
        message = "Operation cancelled"
        if signum is not None:
            message += f" by signal {signum}"
        super().__init__(message)
        self.signum = signum


class PipelineError(TuringPiError):
    """A pipeline stage failed.

    ``cause`` is the original failure. Errors raised while releasing
    resources after that failure are collected in ``release_errors``;
    they never replace the cause.
    """

    def __init__(
        self,
        stage: str,
        cause: BaseException,
        release_errors: Optional[List[BaseException]] = None,
    ):
        super().__init__(f"Stage '{stage}' failed: {cause}")
        self.stage = stage
        self.cause = cause
        self.release_errors = list(release_errors or [])
        for error in self.release_errors:
            self.add_note(f"release error: {error}")
