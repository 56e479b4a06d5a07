from __future__ import annotations

from dataclasses import dataclass, field
import logging
import shutil
import subprocess
from typing import List, Protocol, Sequence

from prayerkeeper.notifications import NotificationRegistration


class CommandRunner(Protocol):
    def run(
        self, args: Sequence[str], *, timeout: int | None
    ) -> subprocess.CompletedProcess[str]:
        ...

    def which(self, name: str) -> str | None:
        ...


@dataclass
class SubprocessCommandRunner:
    def run(
        self, args: Sequence[str], *, timeout: int | None
    ) -> subprocess.CompletedProcess[str]:
        return subprocess.run(
            args,
            check=False,
            capture_output=True,
            text=True,
            timeout=timeout,
        )

    def which(self, name: str) -> str | None:
        return shutil.which(name)


class LogNotifier:
    def __init__(self) -> None:
        self._logger = logging.getLogger(self.__class__.__name__)

    def __call__(self, registration: NotificationRegistration) -> None:
        self._logger.info(
            "Notification %s fired: %s - %s",
            registration.id,
            registration.title,
            registration.body,
        )


@dataclass
class CommandNotifier:
    """Runs an argv template such as ``["notify-send", "{title}", "{body}"]``."""

    runner: CommandRunner
    command: List[str]
    timeout_seconds: int = 10
    fallback: LogNotifier = field(default_factory=LogNotifier)

    def __post_init__(self) -> None:
        self._logger = logging.getLogger(self.__class__.__name__)

    def __call__(self, registration: NotificationRegistration) -> None:
        # Always leave a trace in the log, even when the desktop command works.
        self.fallback(registration)
        if not self.command:
            return
        if self.runner.which(self.command[0]) is None:
            self._logger.warning("Notification command not found: %s", self.command[0])
            return

        args = [
            part.format(
                id=registration.id,
                title=registration.title,
                body=registration.body,
                fire_at=registration.fire_at.isoformat(),
            )
            for part in self.command
        ]
        try:
            result = self.runner.run(args, timeout=self.timeout_seconds)
        except (OSError, subprocess.TimeoutExpired) as exc:
            self._logger.error("Notification command failed: %s", exc)
            return
        if result.returncode != 0:
            self._logger.warning(
                "Notification command exited %s: %s",
                result.returncode,
                (result.stderr or "").strip(),
            )
