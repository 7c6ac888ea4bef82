from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import os
import tempfile

FAIL_FAST = "fail-fast"
CONTINUE_ON_ERROR = "continue"
FAILURE_POLICIES = (FAIL_FAST, CONTINUE_ON_ERROR)


@dataclass(frozen=True)
class AppConfig:
    work_dir: Path = field(default_factory=lambda: Path(os.getenv("IPFIXER_WORK_DIR", tempfile.gettempdir())))
    unpack_namespace: str = field(
        default_factory=lambda: os.getenv("IPFIXER_UNPACK_NAMESPACE", "openshift-marketplace")
    )
    request_timeout_seconds: int = field(
        default_factory=lambda: _int_from_env("IPFIXER_REQUEST_TIMEOUT_SECONDS", "30")
    )
    kubeconfig_path: str | None = field(default_factory=lambda: os.getenv("IPFIXER_KUBECONFIG") or None)
    context: str | None = field(default_factory=lambda: os.getenv("IPFIXER_CONTEXT") or None)


@dataclass(frozen=True)
class RunContext:
    """Per-invocation settings shared by every component.

    Built once at startup; the backup directory and log file accumulate
    across the whole run.
    """

    backup_dir: Path
    log_file: Path
    unpack_namespace: str
    request_timeout_seconds: int
    debug: bool = False
    deletion_enabled: bool = False
    failure_policy: str = FAIL_FAST

    @property
    def fail_fast(self) -> bool:
        return self.failure_policy == FAIL_FAST


def create_run_context(
    config: AppConfig,
    *,
    debug: bool = False,
    deletion_enabled: bool = False,
    failure_policy: str = FAIL_FAST,
) -> RunContext:
    if config.request_timeout_seconds <= 0:
        raise ValueError("request_timeout_seconds must be positive")
    if failure_policy not in FAILURE_POLICIES:
        raise ValueError(f"failure_policy must be one of {', '.join(FAILURE_POLICIES)}")

    config.work_dir.mkdir(parents=True, exist_ok=True)
    backup_dir = Path(tempfile.mkdtemp(prefix="rh-ipfixer-backup.", dir=config.work_dir))
    handle, log_path = tempfile.mkstemp(prefix="rh-ipfixer.", suffix=".log", dir=config.work_dir)
    os.close(handle)

    return RunContext(
        backup_dir=backup_dir,
        log_file=Path(log_path),
        unpack_namespace=config.unpack_namespace,
        request_timeout_seconds=config.request_timeout_seconds,
        debug=debug,
        deletion_enabled=deletion_enabled,
        failure_policy=failure_policy,
    )


def _int_from_env(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
