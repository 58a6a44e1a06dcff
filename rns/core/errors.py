"""Error taxonomy shared by the composition engine and the CLI.

Every error carries the process exit code the CLI should use, so commands can
translate failures without inspecting error types one by one.
"""

from enum import IntEnum
from pathlib import Path


class ExitCode(IntEnum):
    """Process exit codes returned by the CLI."""

    SUCCESS = 0
    GENERIC_FAILURE = 1
    VALIDATION_FAILURE = 2
    DEPENDENCY_INSTALL_FAILURE = 3


class RnsError(Exception):
    """Base error for rns operations."""

    exit_code: ExitCode = ExitCode.GENERIC_FAILURE

    def __init__(self, message: str, step: str | None = None):
        self.step = step
        super().__init__(message)


class ValidationError(RnsError):
    """Project state is not valid for the requested operation.

    Raised before any file is mutated.
    """

    exit_code = ExitCode.VALIDATION_FAILURE


class ManifestNotFoundError(ValidationError):
    """The project manifest does not exist."""

    def __init__(self, path: Path):
        self.path = path
        super().__init__(
            f"Project is not initialized: manifest not found at {path}. "
            "Run 'rns init' to initialize the project.",
            step="preflight",
        )


class ManifestValidationError(ValidationError):
    """The project manifest failed schema validation."""

    def __init__(self, path: Path, errors: list[str]):
        self.path = path
        self.errors = errors
        details = "\n".join(f"  - {e}" for e in errors)
        super().__init__(f"Invalid manifest at {path}:\n{details}", step="preflight")


class MarkerError(ValidationError):
    """A marker region is missing, malformed, or of an unknown type."""


class UnknownCapabilityError(ValidationError):
    """A capability id is not present in the catalog."""

    def __init__(self, capability_id: str):
        self.capability_id = capability_id
        super().__init__(f"Unknown plugin: {capability_id}", step="plan")


class LockError(ValidationError):
    """Another invocation holds the project lock."""


class MutationError(RnsError):
    """A file mutation could not be carried out."""

    def __init__(self, message: str, file: str | None = None, step: str | None = None):
        self.file = file
        super().__init__(message, step=step)


class ExternalToolError(RnsError):
    """An external command (package manager, scaffolding tool) failed."""

    exit_code = ExitCode.DEPENDENCY_INSTALL_FAILURE

    def __init__(self, command: list[str], cwd: Path, output: str = "", returncode: int | None = None):
        self.command = command
        self.cwd = cwd
        self.output = output
        self.returncode = returncode
        message = f"Command failed: {' '.join(command)} (cwd: {cwd})"
        if returncode is not None:
            message += f" exited with {returncode}"
        if output:
            message += f"\n{output.strip()}"
        super().__init__(message, step="link")
