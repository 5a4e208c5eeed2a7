"""
Module: cli
Purpose: Command-line interface entry point.
"""

import argparse
import io
import json
import signal
import sys
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, List, Sequence

from . import planner, reporting, topology
from .cli_formatter import CLIFormatter, detect_terminal_capabilities
from .config import (
    ConsolidationConfig,
    parse_size,
    resolve_mnt_root,
    resolve_safety_margin,
    resolve_user_root,
)
from .exceptions import ConfigError, ConflictDetectedError, Consld8Error
from .models.moveplan import MovePlan
from .models.result import ExecutionMode, ExecutionResult, OperationResult, Outcome
from .session import Session
from .utils import human_readable_size

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_BLOCKED = 2
MAX_LISTED_OPERATIONS = 25
_STATUS = {EXIT_OK: "OK", EXIT_FAILED: "FAILED", EXIT_BLOCKED: "BLOCKED"}

_RUN_LOG_PATH: str | None = None


def _ensure_run_log_path() -> str:
    """
    Guarantee consld8.log exists and return its absolute path.
    """
    global _RUN_LOG_PATH
    if _RUN_LOG_PATH:
        return _RUN_LOG_PATH
    _RUN_LOG_PATH = reporting.ensure_log_initialized()
    return _RUN_LOG_PATH


def _render_failure(formatter: CLIFormatter, reason: str, remediation: list[str], status: str = "FAILED") -> None:
    log_path = _ensure_run_log_path()
    if formatter.config.pipe_mode:
        _emit_pipe(formatter, {"status": status, "reason": reason, "remediation": remediation, "log": log_path})
        return
    formatter.failure_summary(
        reason=reason,
        log_hint=formatter.link(log_path, "consld8.log"),
        remediation=remediation,
    )


def _emit_pipe(formatter: CLIFormatter, payload: dict) -> None:
    if not formatter.config.pipe_mode:
        return
    document = {"schema_version": reporting.SCHEMA_VERSION}
    document.update(payload)
    formatter.pipe_target.write(json.dumps(document, separators=(",", ":"), default=str) + "\n")


def _prompt(formatter: CLIFormatter, message: str, default: str = "") -> str:
    """
    Prompt the user and return input or default on empty/EOF.
    """
    if formatter.config.pipe_mode:
        return default
    try:
        value = input(formatter.prompt(message))
    except (EOFError, OSError):
        return default
    value = value.strip()
    return value if value else default


def _pick(formatter: CLIFormatter, message: str, options: Sequence[str]) -> str:
    """
    Accept either the 1-based number shown next to an option or its name.
    Returns "" when the user cancels.
    """
    while True:
        answer = _prompt(formatter, message)
        if not answer:
            return ""
        if answer.isdigit() and 1 <= int(answer) <= len(options):
            return options[int(answer) - 1]
        if answer in options:
            return answer
        formatter.warning(f"'{answer}' is not one of the listed options.")


def _render_plan(formatter: CLIFormatter, plan: MovePlan) -> None:
    if formatter.config.pipe_mode:
        return
    summary = reporting.plan_summary(plan)
    per_disk = ", ".join(f"{disk}: {count}" for disk, count in summary["operations_per_disk"].items()) or "-"
    formatter.summary_box(
        "MOVE PLAN",
        [
            ("Folder", f"{plan.share}/{plan.subfolder}"),
            ("Destination", plan.destination_disk),
            ("Files to move", f"{len(plan.actions):,}"),
            ("From", per_disk),
            ("Required space", summary["required_space_human"]),
            ("Destination free", summary["destination_free_human"]),
            ("Safety margin", human_readable_size(plan.safety_margin)),
            ("Conflicts", str(len(plan.conflicts))),
        ],
    )
    if formatter.config.verbose:
        for action in plan.actions[:MAX_LISTED_OPERATIONS]:
            formatter.verbose(f"{action.source_disk} -> {action.destination_disk}: {action.relative_path}")
        if len(plan.actions) > MAX_LISTED_OPERATIONS:
            formatter.verbose(f"... {len(plan.actions) - MAX_LISTED_OPERATIONS} more")


def _render_conflicts(formatter: CLIFormatter, plan: MovePlan) -> None:
    if formatter.config.pipe_mode or not plan.conflicts:
        return
    formatter.section("Conflicts (same path on more than one disk)")
    for conflict in plan.conflicts:
        sizes = ", ".join(
            f"{entry.disk}={human_readable_size(entry.size)}" for entry in conflict.entries
        )
        state = " [excluded]" if conflict.relative_path in plan.excluded else ""
        formatter.bullet(f"{conflict.relative_path} ({sizes}){state}")


def _render_result(formatter: CLIFormatter, result: ExecutionResult) -> None:
    if formatter.config.pipe_mode:
        return
    dry_run = result.mode == ExecutionMode.DRY_RUN
    formatter.blank()
    if dry_run:
        formatter.line(formatter.label("MODE: DRY RUN", level="info"))
        formatter.muted("Preview only. No files were moved.")
    else:
        formatter.line(formatter.label("MODE: FORCE", level="warn"))
    formatter.summary_box(
        "RESULT",
        [
            ("Would move" if dry_run else "Moved", str(result.moved)),
            ("Skipped", str(result.skipped)),
            ("Failed", str(result.failed)),
            ("Bytes", human_readable_size(result.bytes_moved)),
            ("Emptied directories", str(len(result.removed_dirs))),
        ],
    )
    for op in result.operations:
        if op.outcome == Outcome.MOVED:
            continue
        line = f"{op.outcome.value.upper()} {op.action.relative_path} ({op.action.source_disk}): {op.reason}"
        if op.outcome == Outcome.FAILED:
            formatter.error(line)
        else:
            formatter.warning(line)
    if result.cancelled:
        formatter.warning("Run cancelled; moves already applied stand.")
    if result.fatal_error:
        formatter.error(f"Run aborted: {result.fatal_error}")


def _progress_printer(formatter: CLIFormatter) -> Callable[[OperationResult], None] | None:
    if not formatter.config.verbose or formatter.config.pipe_mode:
        return None

    def _print(op: OperationResult) -> None:
        formatter.verbose(f"{op.outcome.value}: {op.action.src} -> {op.action.dst}")

    return _print


@contextmanager
def _interrupt_as_cancel(formatter: CLIFormatter) -> Iterator[threading.Event]:
    """
    While a plan runs, the first Ctrl+C only asks the executor to stop after
    the current file; a second one interrupts immediately.
    """
    cancel_event = threading.Event()

    def _on_sigint(signum, frame) -> None:
        if cancel_event.is_set():
            raise KeyboardInterrupt
        cancel_event.set()
        reporting.write_log(["[WARNING] Ctrl+C received; stopping after the current file"])
        formatter.warning("Stopping after the current file. Press Ctrl+C again to abort at once.")

    try:
        previous = signal.signal(signal.SIGINT, _on_sigint)
    except ValueError:
        # signal handlers can only be installed from the main thread
        yield cancel_event
        return
    try:
        yield cancel_event
    finally:
        signal.signal(signal.SIGINT, previous)


def _run_session(
    formatter: CLIFormatter,
    config: ConsolidationConfig,
    *,
    report_path: str | None = None,
) -> tuple[int, dict]:
    """
    Drive one Session from share selection to execution.
    Returns (exit code, session report).
    """
    with Session(mnt_root=config.mnt_root, user_root=config.user_root) as session:
        session.select_share(config.share)
        plan = session.select_target(config.subfolder, config.destination_disk, config.safety_margin)
        _render_plan(formatter, plan)
        if plan.conflicts and config.exclude_conflicts:
            session.exclude_conflicts()
        _render_conflicts(formatter, plan)
        if plan.unresolved_conflicts:
            if not formatter.config.pipe_mode:
                _render_failure(
                    formatter,
                    f"{len(plan.unresolved_conflicts)} files exist on more than one source disk.",
                    [
                        "Remove or rename the duplicate copies, then rerun.",
                        "Or rerun with --exclude-conflicts to leave them where they are.",
                    ],
                    status="BLOCKED",
                )
            return EXIT_BLOCKED, session.report()
        with _interrupt_as_cancel(formatter) as cancel_event:
            result = session.execute(
                config.mode,
                cancel_event=cancel_event,
                verify=config.verify,
                on_progress=_progress_printer(formatter),
            )
    _render_result(formatter, result)
    report = session.report()
    if report_path:
        written = reporting.write_json_report(report, report_path)
        if not formatter.config.pipe_mode:
            formatter.line(f"Report: {formatter.link(written)}")
    return (EXIT_OK if result.succeeded else EXIT_FAILED), report


def _disks_flow(formatter: CLIFormatter, mnt_root: str) -> int:
    disks = topology.list_disks(mnt_root)
    if formatter.config.pipe_mode:
        _emit_pipe(
            formatter,
            {"disks": [{"name": d.name, "mount": d.mount_path, "free": d.free_bytes} for d in disks]},
        )
        return EXIT_OK
    if not disks:
        formatter.warning(f"No diskN or cache mounts found under {mnt_root}.")
        return EXIT_FAILED
    formatter.section("Disks")
    for disk in disks:
        formatter.kv(disk.name, f"Free: {human_readable_size(disk.free_bytes)}")
    return EXIT_OK


def _shares_flow(formatter: CLIFormatter, user_root: str) -> int:
    shares = topology.list_shares(user_root)
    if formatter.config.pipe_mode:
        _emit_pipe(formatter, {"shares": shares})
        return EXIT_OK
    formatter.section("User shares")
    if not shares:
        formatter.muted(f"No shares found under {user_root}.")
    for share in shares:
        formatter.bullet(share)
    return EXIT_OK


def _folders_flow(formatter: CLIFormatter, share: str, mnt_root: str) -> int:
    folders = topology.list_share_folders(share, topology.list_disks(mnt_root))
    if formatter.config.pipe_mode:
        _emit_pipe(
            formatter,
            {"share": share, "folders": [{"name": f.name, "disks": f.disks, "split": f.is_split} for f in folders]},
        )
        return EXIT_OK
    formatter.section(f"Folders in {share}")
    if not folders:
        formatter.muted("No folders found on any disk.")
    for folder in folders:
        marker = formatter.label(" [split]", level="warn", bold=False) if folder.is_split else ""
        formatter.bullet(f"{folder.name} ({', '.join(folder.disks)}){marker}")
    return EXIT_OK


def _consolidate_flow(formatter: CLIFormatter, config: ConsolidationConfig, report_path: str | None) -> int:
    config.validate()
    code, report = _run_session(formatter, config, report_path=report_path)
    _emit_pipe(formatter, {"status": _STATUS.get(code, "FAILED"), "report": report})
    return code


def _auto_flow(
    formatter: CLIFormatter,
    share: str,
    *,
    mode: ExecutionMode,
    safety_margin: int,
    mnt_root: str,
    user_root: str,
    verify: str,
    exclude_conflicts: bool,
) -> int:
    """
    Automatic mode: consolidate every split folder of a share onto the
    disk that already holds most of it.
    """
    split = topology.find_split_folders(share, topology.list_disks(mnt_root))
    if not split:
        formatter.success(f"Nothing to consolidate: no folder of {share} spans more than one disk.")
        _emit_pipe(formatter, {"status": "OK", "share": share, "folders": []})
        return EXIT_OK
    worst = EXIT_OK
    summaries: List[dict] = []
    for folder in split:
        formatter.section(f"{share}/{folder.name} ({', '.join(folder.disks)})")
        try:
            destination = planner.suggest_destination(
                share, folder.name, topology.list_disks(mnt_root), safety_margin=safety_margin
            )
            formatter.verbose(f"Suggested destination: {destination.name}")
            config = ConsolidationConfig(
                share=share,
                subfolder=folder.name,
                destination_disk=destination.name,
                mode=mode,
                safety_margin=safety_margin,
                mnt_root=mnt_root,
                user_root=user_root,
                verify=verify,
                exclude_conflicts=exclude_conflicts,
            ).validate()
            code, report = _run_session(formatter, config)
        except Consld8Error as exc:
            formatter.warning(str(exc))
            code, report = EXIT_FAILED, {"subfolder": folder.name, "error": str(exc)}
        summaries.append(report)
        worst = max(worst, code)
        if report.get("cancelled"):
            formatter.warning("Cancelled; remaining folders were not processed.")
            break
    _emit_pipe(formatter, {"status": _STATUS.get(worst, "FAILED"), "share": share, "folders": summaries})
    return worst


def _wizard_flow(formatter: CLIFormatter, *, mnt_root: str, user_root: str, safety_margin: int, verify: str) -> int:
    """
    Interactive two-step wizard: share, then folder and destination disk,
    then dry run or force.
    """
    if formatter.config.pipe_mode:
        _render_failure(formatter, "The wizard needs an interactive terminal.", ["Use 'consld8 consolidate' instead."])
        return EXIT_FAILED
    formatter.print_banner()
    with Session(mnt_root=mnt_root, user_root=user_root) as session:
        formatter.section("Step 1: Select base user share")
        shares = session.available_shares()
        if not shares:
            formatter.warning(f"No user shares found under {user_root}.")
            return EXIT_FAILED
        for index, share in enumerate(shares, start=1):
            formatter.line(f"  [{index}] {share}")
        share = _pick(formatter, "> Share (number or name, Enter cancels): ", shares)
        if not share:
            formatter.muted("Cancelled.")
            return EXIT_OK
        session.select_share(share)

        formatter.section("Step 2: Define consolidation move")
        folders = session.available_folders()
        for index, folder in enumerate(folders, start=1):
            split = " [split]" if folder.is_split else ""
            formatter.line(f"  [{index}] {folder.name} ({', '.join(folder.disks)}){split}")
        folder_name = _pick(formatter, "> Folder to consolidate (number or name): ", [f.name for f in folders])
        if not folder_name:
            formatter.muted("Cancelled.")
            return EXIT_OK

        disks = session.available_disks()
        for index, disk in enumerate(disks, start=1):
            formatter.line(f"  [{index}] {disk.name} (Free: {human_readable_size(disk.free_bytes)})")
        disk_name = _pick(formatter, "> Destination disk (number or name): ", [d.name for d in disks])
        if not disk_name:
            formatter.muted("Cancelled.")
            return EXIT_OK

        plan = session.select_target(folder_name, disk_name, safety_margin)
        _render_plan(formatter, plan)
        _render_conflicts(formatter, plan)
        if plan.unresolved_conflicts:
            answer = _prompt(formatter, "> Leave conflicting files where they are and continue? [y/N]: ", "n")
            if answer.lower() not in ("y", "yes"):
                _render_failure(
                    formatter,
                    "Conflicting files must be resolved before consolidating.",
                    ["Remove or rename the duplicate copies, then rerun the wizard."],
                    status="BLOCKED",
                )
                return EXIT_BLOCKED
            session.exclude_conflicts()

        formatter.warning("Always run a dry run first!")
        answer = _prompt(formatter, "> Dry run (test mode)? [Y/n]: ", "y")
        mode = ExecutionMode.DRY_RUN
        if answer.lower() in ("n", "no"):
            confirm = _prompt(formatter, "> Type FORCE to move files for real: ", "")
            if confirm != "FORCE":
                formatter.muted("Not confirmed. Nothing was moved.")
                return EXIT_OK
            mode = ExecutionMode.FORCE
        with _interrupt_as_cancel(formatter) as cancel_event:
            result = session.execute(
                mode, cancel_event=cancel_event, verify=verify, on_progress=_progress_printer(formatter)
            )
    _render_result(formatter, result)
    return EXIT_OK if result.succeeded else EXIT_FAILED


def _size_arg(value: str) -> int:
    try:
        return parse_size(value)
    except ConfigError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _add_mode_flags(parser: argparse.ArgumentParser) -> None:
    group = parser.add_mutually_exclusive_group()
    group.add_argument(
        "-t",
        "--dry-run",
        dest="force",
        action="store_false",
        help="Test run: report what would move without touching files (default)",
    )
    group.add_argument("-f", "--force", dest="force", action="store_true", help="Move files for real")
    parser.set_defaults(force=False)
    parser.add_argument(
        "--safety-margin",
        type=_size_arg,
        default=None,
        help="Space to keep free on the destination, e.g. 50G (default 0; also $CONSLD8_SAFETY_MARGIN)",
    )
    parser.add_argument(
        "--verify",
        choices=["size", "checksum"],
        default="size",
        help="How cross-disk copies are verified before the source is deleted (default size)",
    )
    parser.add_argument(
        "--exclude-conflicts",
        action="store_true",
        help="Leave files present on several source disks in place instead of blocking",
    )


def main():
    """
    Argument parser entry point.

    Raises:
        SystemExit: With the command's exit code.
    """
    parser = argparse.ArgumentParser(
        prog="consld8",
        description="Consolidate a user share folder spread over several disks onto one disk.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Print every planned and applied move.")
    parser.add_argument("--plain", action="store_true", help="Plain mode: ASCII only, no colors.")
    parser.add_argument("--no-color", action="store_true", help="Disable ANSI colors.")
    parser.add_argument(
        "--mode",
        choices=["auto", "tty", "plain", "pipe"],
        default="auto",
        help="Force output mode: auto (default), tty, plain, or pipe (single-line JSON).",
    )
    parser.add_argument("--mnt-root", default=None, help="Disk mount root (default /mnt; also $CONSLD8_MNT_ROOT)")
    parser.add_argument("--user-root", default=None, help="User share root (default <mnt-root>/user)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("disks", help="List array disks and their free space")
    subparsers.add_parser("shares", help="List user shares")
    folders_parser = subparsers.add_parser("folders", help="List a share's folders and the disks holding them")
    folders_parser.add_argument("share")

    consolidate_parser = subparsers.add_parser(
        "consolidate",
        help="Consolidate one folder onto one disk",
        description=(
            "Moves every file of SHARE/SUBFOLDER found on other disks onto DISK.\n"
            "Runs as a dry run unless --force is given."
        ),
    )
    consolidate_parser.add_argument("share")
    consolidate_parser.add_argument("subfolder")
    consolidate_parser.add_argument("disk")
    consolidate_parser.add_argument("--report", default=None, help="Write the session report as JSON to this path")
    _add_mode_flags(consolidate_parser)

    auto_parser = subparsers.add_parser(
        "auto",
        help="Consolidate every split folder of a share automatically",
        description="Picks, per split folder, the disk already holding most of it and consolidates there.",
    )
    auto_parser.add_argument("share")
    _add_mode_flags(auto_parser)

    wizard_parser = subparsers.add_parser("wizard", help="Interactive consolidation wizard")
    wizard_parser.add_argument("--safety-margin", type=_size_arg, default=None)
    wizard_parser.add_argument("--verify", choices=["size", "checksum"], default="size")

    args = parser.parse_args()

    formatter_config = detect_terminal_capabilities(
        plain_mode=args.plain,
        no_color_flag=args.no_color,
        stdout_isatty=sys.stdout.isatty(),
        mode_preference=args.mode,
    )
    formatter_config.verbose = args.verbose
    pipe_stream = io.StringIO() if formatter_config.pipe_mode else None
    formatter = CLIFormatter(formatter_config, stream=pipe_stream or sys.stdout)

    _ensure_run_log_path()
    mnt_root = resolve_mnt_root(args.mnt_root)
    user_root = resolve_user_root(args.user_root, mnt_root=mnt_root)
    exit_code = EXIT_OK
    try:
        reporting.write_log([f"[INFO] Command {args.command} started (mnt_root={mnt_root})"])
        if args.command == "disks":
            exit_code = _disks_flow(formatter, mnt_root)
        elif args.command == "shares":
            exit_code = _shares_flow(formatter, user_root)
        elif args.command == "folders":
            exit_code = _folders_flow(formatter, args.share, mnt_root)
        elif args.command == "consolidate":
            margin, _ = resolve_safety_margin(args.safety_margin)
            config = ConsolidationConfig(
                share=args.share,
                subfolder=args.subfolder,
                destination_disk=args.disk,
                mode=ExecutionMode.FORCE if args.force else ExecutionMode.DRY_RUN,
                safety_margin=margin,
                mnt_root=mnt_root,
                user_root=user_root,
                verify=args.verify,
                exclude_conflicts=args.exclude_conflicts,
            )
            exit_code = _consolidate_flow(formatter, config, args.report)
        elif args.command == "auto":
            margin, _ = resolve_safety_margin(args.safety_margin)
            exit_code = _auto_flow(
                formatter,
                args.share,
                mode=ExecutionMode.FORCE if args.force else ExecutionMode.DRY_RUN,
                safety_margin=margin,
                mnt_root=mnt_root,
                user_root=user_root,
                verify=args.verify,
                exclude_conflicts=args.exclude_conflicts,
            )
        elif args.command == "wizard":
            margin, _ = resolve_safety_margin(args.safety_margin)
            exit_code = _wizard_flow(
                formatter, mnt_root=mnt_root, user_root=user_root, safety_margin=margin, verify=args.verify
            )
    except KeyboardInterrupt:
        reporting.write_log(["[WARNING] Operation aborted via Ctrl+C"])
        _render_failure(
            formatter,
            "Interrupted by user (Ctrl+C).",
            ["Re-run the command when ready. Completed moves stand; the interrupted file was rolled back."],
            status="ABORTED",
        )
        exit_code = EXIT_FAILED
    except Consld8Error as exc:
        reporting.write_log([f"[ERROR] {exc}"])
        _render_failure(
            formatter,
            str(exc),
            ["Address the reported issue, then rerun the command."],
        )
        exit_code = EXIT_BLOCKED if isinstance(exc, ConflictDetectedError) else EXIT_FAILED
    except Exception as exc:  # pragma: no cover - last resort for CLI UX
        reporting.write_log([f"[ERROR] Unexpected failure: {exc}"])
        _render_failure(
            formatter,
            f"Unexpected failure: {exc}",
            ["Inspect consld8.log for details and report the issue if it persists."],
        )
        exit_code = EXIT_FAILED
    reporting.write_log([f"[INFO] Command {args.command} finished with exit code {exit_code}"])
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
