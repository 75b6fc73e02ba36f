"""Error taxonomy shared by orchestrator, provisioning, and transfer steps."""

from __future__ import annotations


class ProvisioningError(RuntimeError):
    """Host setup failed. Fatal for the run, never retried internally."""

    def __init__(
        self,
        message: str,
        *,
        step: str,
        command: str | None = None,
        returncode: int | None = None,
    ) -> None:
        super().__init__(message)
        self.step = step
        self.command = command
        self.returncode = returncode


class TransferError(RuntimeError):
    """Artifact fetch failed. Callers may retry."""

    def __init__(self, message: str, *, url: str) -> None:
        super().__init__(message)
        self.url = url


class SpawnError(RuntimeError):
    """Background task failed to launch. No tracking token is left behind."""

    def __init__(self, message: str, *, run_id: str) -> None:
        super().__init__(message)
        self.run_id = run_id


class UploadError(RuntimeError):
    """Archive upload of task outputs failed or was requested too early."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class StopError(RuntimeError):
    """Background task outlived termination. Its tracking token is kept."""

    def __init__(self, message: str, *, run_id: str, pid: int) -> None:
        super().__init__(message)
        self.run_id = run_id
        self.pid = pid
