from __future__ import annotations

from typing import Callable, Sequence
import argparse
import logging
import sys

from . import __version__
from .config import CONTINUE_ON_ERROR, FAIL_FAST, AppConfig, RunContext, create_run_context
from .detector import DetectionError, detect, find_staging_catalog_sources
from .k8s import KubernetesAuthenticationError, ResourceClient, ResourceClientError, load_kubernetes_clients
from .models import FaultRecord, ItemState
from .remediation import RemediationEngine, UserAbort
from .report import render_fault_table

logger = logging.getLogger(__name__)

KCS_LINK = "https://access.redhat.com/articles/7000167"
GREEN_CHECKMARK = "\033[32m✔\033[0m"
UNRECOGNIZED_ARGUMENTS = "unrecognized arguments:"

BANNER = f"""InstallPlan Fixer v{__version__}
Fixes install plans whose bundle unpacking failed because of a polluted OLM index.
For more information: {KCS_LINK}
"""

FIX_PLAN_TEXT = """
For each faulty install plan, the following operations will be executed to correct the fault:
  1) The install plan's unpack job id will be deduced from the install plans status
  2) The install plan and associated unpack job and configmap will be backed-up
  3) The install plan and associated unpack job and configmap will be deleted
Once this is done, OLM will create a new, corrected, install plan"""


class FixerArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        if message.startswith(UNRECOGNIZED_ARGUMENTS):
            self.exit(1, f"Unknown parameter passed: {message[len(UNRECOGNIZED_ARGUMENTS):].strip()}\n")
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def create_parser() -> argparse.ArgumentParser:
    parser = FixerArgumentParser(
        prog="installplan-fixer",
        description="Check for and fix install plans whose bundle image points at the staging registry.",
        epilog=f"For more information, please check: {KCS_LINK}",
        add_help=False,
    )
    modes = parser.add_mutually_exclusive_group()
    modes.add_argument("-c", "--check", action="store_true", help="Check for and list faulty install plans.")
    modes.add_argument("-f", "--fix", action="store_true", help="Fix faulty install plans.")
    parser.add_argument(
        "-d",
        "--debug",
        action="store_true",
        help="Output all API calls and their results to the screen for debugging purposes.",
    )
    parser.add_argument("-v", "--version", action="store_true", help="Display the current version.")
    parser.add_argument("-h", "--help", action="help", help="Display this help message.")
    parser.add_argument("-y", "--yes", action="store_true", help="Skip the confirmation prompt in fix mode.")
    parser.add_argument(
        "--enable-deletion",
        action="store_true",
        help="Delete the backed-up install plan, unpack job and configmap so OLM recreates them.",
    )
    parser.add_argument(
        "--continue-on-error",
        action="store_true",
        help="Keep fixing the remaining install plans after a failure instead of stopping.",
    )
    parser.add_argument("--kubeconfig", default=None, help="Path to the kubeconfig file to use.")
    parser.add_argument("--context", default=None, help="Kubeconfig context to use.")
    parser.add_argument("--in-cluster", action="store_true", help="Use the in-cluster service account.")
    return parser


def configure_logging(context: RunContext) -> logging.Logger:
    """Send the run transcript to stdout and to the run log file."""
    package_logger = logging.getLogger("installplan_fixer")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    file_handler = logging.FileHandler(context.log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG if context.debug else logging.INFO)
    console_handler.setFormatter(logging.Formatter("%(message)s"))

    package_logger.addHandler(file_handler)
    package_logger.addHandler(console_handler)
    package_logger.setLevel(logging.DEBUG)
    package_logger.propagate = False
    return package_logger


def main(argv: Sequence[str] | None = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    print(BANNER)
    if args.version:
        print(f"Version: v{__version__}")
        return 0
    if not (args.check or args.fix):
        parser.print_help()
        return 0

    try:
        config = AppConfig()
        context = create_run_context(
            config,
            debug=args.debug,
            deletion_enabled=args.enable_deletion,
            failure_policy=CONTINUE_ON_ERROR if args.continue_on_error else FAIL_FAST,
        )
    except (ValueError, OSError) as error:
        print(f"Error: {error}", file=sys.stderr)
        return 1
    configure_logging(context)
    logger.debug("Run context: %s", context)

    try:
        resource_client = _build_resource_client(args, config, context)
        _ensure_catalog_sources(resource_client, context)
        if args.check:
            logger.info("Running faulty install plan check.")
        else:
            logger.info("Fixing faulty install plans.")
        logger.info(
            "Looking for install plans whose unpack job failed due to the bundle image being in the staging repository."
        )
        records = detect(resource_client)
        _print_report(records)

        if args.check or not records:
            return 0
        return _fix(resource_client, context, records, assume_yes=args.yes)
    except UserAbort as error:
        logger.info("%s", error)
        return 1
    except (KubernetesAuthenticationError, DetectionError) as error:
        logger.error("\nError: %s", error)
        _print_recovery_hints(context)
        return 1
    except Exception as error:  # pylint: disable=broad-except
        logger.exception("\nUnexpected error: %s", error)
        _print_recovery_hints(context)
        return 1


def _fix(resource_client: ResourceClient, context: RunContext, records: list[FaultRecord], *, assume_yes: bool) -> int:
    logger.info(FIX_PLAN_TEXT)
    if not context.deletion_enabled:
        logger.info("Deletion is disabled for this run; step 3 will be skipped (use --enable-deletion).")

    engine = RemediationEngine(resource_client=resource_client, context=context)
    result = engine.run(records, confirm=lambda: assume_yes or _prompt_confirmation())

    fixed = [outcome for outcome in result.outcomes if outcome.state in {ItemState.BACKED_UP, ItemState.DELETED}]
    logger.info("")
    logger.info("Processed %d of %d install plan(s) successfully.", len(fixed), len(records))
    if not result.succeeded:
        _print_recovery_hints(context)
        return 1

    logger.info("Backups were written to: %s", context.backup_dir)
    logger.info("Execution was logged in: %s", context.log_file)
    return 0


def _prompt_confirmation(input_func: Callable[[str], str] | None = None) -> bool:
    logger.info("")
    try:
        response = (input_func or input)("Proceed with fixing the faulty install plans? [y/N]: ")
    except EOFError:
        response = ""
    logger.debug("Confirmation response: %r", response)
    return response.strip() in {"y", "Y"}


def _print_report(records: list[FaultRecord]) -> None:
    logger.info("")
    for line in render_fault_table(records, color=sys.stdout.isatty()):
        logger.info(line)


def _ensure_catalog_sources(resource_client: ResourceClient, context: RunContext) -> None:
    try:
        polluted = find_staging_catalog_sources(resource_client, context.unpack_namespace)
    except ResourceClientError as error:
        logger.warning("Could not verify marketplace catalog sources: %s", error)
        return

    if not polluted:
        logger.info("Ensuring marketplace catalog sources have been updated with the correct image...%s", GREEN_CHECKMARK)
        return
    for name, image in polluted:
        logger.warning(
            "Catalog source %s/%s still uses staging image %s; fixed install plans may fail again.",
            context.unpack_namespace,
            name,
            image,
        )


def _print_recovery_hints(context: RunContext) -> None:
    logger.info("")
    logger.info("Execution was logged in: %s", context.log_file)
    logger.info("Original related kubernetes resources, if any, were backed up at: %s", context.backup_dir)


def _build_resource_client(args: argparse.Namespace, config: AppConfig, context: RunContext) -> ResourceClient:
    clients = load_kubernetes_clients(
        kubeconfig_path=args.kubeconfig or config.kubeconfig_path,
        context=args.context or config.context,
        in_cluster=args.in_cluster,
    )
    return ResourceClient(clients, request_timeout_seconds=context.request_timeout_seconds)


if __name__ == "__main__":
    sys.exit(main())
