"""Advisory project lock held while a pipeline mutates the project."""

import logging
import os
from pathlib import Path
from types import TracebackType

from rns.config.parser import STATE_DIR
from rns.core.errors import LockError

logger = logging.getLogger("rns.lock")

LOCK_FILE = "lock"


class ProjectLock:
    """Exclusive lock file at .rns/lock.

    The lock is advisory: it only keeps rns invocations from running
    concurrently against the same project. A lock left behind by a killed
    process must be removed by hand; the error names the file and the pid
    that created it.
    """

    def __init__(self, project_root: Path) -> None:
        self.path = project_root / STATE_DIR / LOCK_FILE
        self._held = False

    def acquire(self) -> None:
        """Create the lock file.

        Raises:
            LockError: If the lock is already held
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError as e:
            owner = self.path.read_text(encoding="utf-8").strip() or "unknown"
            raise LockError(
                f"Another rns command is running on this project (pid {owner}). "
                f"If no other command is running, remove {self.path}"
            ) from e
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(str(os.getpid()))
        self._held = True
        logger.debug("Acquired %s", self.path)

    def release(self) -> None:
        if self._held:
            self.path.unlink(missing_ok=True)
            self._held = False
            logger.debug("Released %s", self.path)

    @property
    def held(self) -> bool:
        return self._held

    def __enter__(self) -> "ProjectLock":
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()
