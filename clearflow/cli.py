# Copyright 2025 Ralph Lemke
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""clearflow command-line interface."""

import argparse
import logging
import sys
from collections.abc import Callable

from .config import FlowConfig, load_config
from .entities import AffectedSet, ClearTarget
from .errors import ClearFlowError
from .flow import ClearTaskInstanceFlow
from .preview import RefreshPolicy
from .rest_service import RestClearService
from .scheduling import InlineExecutor, ManualScheduler
from .service import ClearServiceAPI
from .types import MAP_INDEX_ALL, ClearScope, TaskInstanceRef

# Known subcommands for routing
_SUBCOMMANDS = {"preview", "clear"}

ServiceFactory = Callable[[argparse.Namespace], ClearServiceAPI]


def _build_target_parser(parser: argparse.ArgumentParser) -> None:
    """Add target and scope arguments shared by preview and clear."""

    parser.add_argument("dag_id", help="Workflow (DAG) id")
    parser.add_argument("run_id", help="Workflow run id")
    parser.add_argument("task_id", help="Task id")

    mapping = parser.add_mutually_exclusive_group()
    mapping.add_argument(
        "--map-index",
        type=int,
        default=MAP_INDEX_ALL,
        help="Map index of a mapped task instance (default: -1, unmapped)",
    )
    mapping.add_argument(
        "--all-mapped",
        action="store_true",
        help="Clear every map index of the task",
    )

    # Scope options
    parser.add_argument("--past", action="store_true", help="Include past runs")
    parser.add_argument("--future", action="store_true", help="Include future runs")
    parser.add_argument("--upstream", action="store_true", help="Include upstream tasks")
    parser.add_argument(
        "--no-downstream",
        action="store_true",
        help="Do not include downstream tasks (included by default)",
    )
    parser.add_argument(
        "--only-failed",
        action="store_true",
        help="Only clear failed task instances",
    )

    parser.add_argument(
        "--run-on-latest-version",
        action="store_true",
        help="Run on the workflow's latest bundle version when the instance ran on another",
    )


def _build_clear_parser(parser: argparse.ArgumentParser) -> None:
    """Add clear-specific arguments to *parser*."""

    parser.add_argument(
        "--allow-running",
        action="store_true",
        help="Do not refuse to clear task instances that are running",
    )

    parser.add_argument(
        "--note",
        default=None,
        help="Replace the task instance note (single instance only)",
    )

    parser.add_argument(
        "-y",
        "--yes",
        action="store_true",
        help="Do not ask for confirmation",
    )


def _add_common_args(parser: argparse.ArgumentParser) -> None:
    """Add arguments shared by all subcommands."""
    parser.add_argument(
        "--config",
        metavar="FILE",
        help="Path to clearflow config file (JSON). "
        "Defaults to clearflow.config.json in cwd, ~/.clearflow/, or /etc/clearflow/",
    )

    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: WARNING)",
    )

    parser.add_argument(
        "--log-file",
        default=None,
        metavar="FILE",
        help="Log to file instead of stderr",
    )


def _configure_logging(parsed: argparse.Namespace) -> None:
    """Set up logging from parsed CLI args."""
    log_handlers: list[logging.Handler] = []
    if parsed.log_file:
        log_handlers.append(logging.FileHandler(parsed.log_file))
    else:
        log_handlers.append(logging.StreamHandler())

    logging.basicConfig(
        level=getattr(logging, parsed.log_level),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        handlers=log_handlers,
    )


# =========================================================================
# Flow driving
# =========================================================================


def _selected_options(parsed: argparse.Namespace) -> set[str]:
    selected = set()
    if parsed.past:
        selected.add(ClearScope.PAST)
    if parsed.future:
        selected.add(ClearScope.FUTURE)
    if parsed.upstream:
        selected.add(ClearScope.UPSTREAM)
    if not parsed.no_downstream:
        selected.add(ClearScope.DOWNSTREAM)
    if parsed.only_failed:
        selected.add(ClearScope.ONLY_FAILED)
    return selected


def _open_flow(
    parsed: argparse.Namespace, service: ClearServiceAPI, config: FlowConfig
) -> ClearTaskInstanceFlow:
    """Open a flow for the requested target and apply the requested inputs."""
    ref = TaskInstanceRef(parsed.dag_id, parsed.run_id, parsed.task_id, parsed.map_index)
    target = ClearTarget(ref=ref)
    if not parsed.all_mapped:
        target = ClearTarget(ref=ref, summary=service.get_task_instance(ref))

    # One-shot: requests run inline and the preview is not polled
    flow = ClearTaskInstanceFlow(
        service,
        target=target,
        all_mapped=parsed.all_mapped,
        executor=InlineExecutor(),
        scheduler=ManualScheduler(),
        config=config,
        refresh_policy=RefreshPolicy.disabled(),
    )
    flow.open()

    requested = _selected_options(parsed)
    selected = flow.select_options(requested)
    for dropped in sorted(requested - selected):
        print(f"Warning: --{dropped} ignored, the task instance has no logical date", file=sys.stderr)

    if parsed.run_on_latest_version:
        if not flow.set_run_on_latest_version(True):
            print(
                "Warning: --run-on-latest-version ignored, not applicable to this task instance",
                file=sys.stderr,
            )
    return flow


def _print_affected(affected: AffectedSet) -> None:
    for ti in affected.task_instances:
        index = f"[{ti.map_index}]" if ti.map_index != MAP_INDEX_ALL else ""
        print(f"  {ti.run_id}  {ti.display_name}{index}  {ti.state or 'none'}")
    print(f"{affected.total_entries} task instance(s) affected")


def _handle_preview(
    parsed: argparse.Namespace, service: ClearServiceAPI, config: FlowConfig
) -> int:
    """Execute the preview subcommand."""
    flow = _open_flow(parsed, service, config)
    _print_affected(flow.affected)
    flow.close()
    if flow.preview.last_error is not None:
        print(f"Error: {flow.preview.last_error}", file=sys.stderr)
        return 1
    return 0


def _handle_clear(
    parsed: argparse.Namespace, service: ClearServiceAPI, config: FlowConfig
) -> int:
    """Execute the clear subcommand."""
    flow = _open_flow(parsed, service, config)
    if parsed.allow_running:
        flow.set_prevent_running_task(False)
    if parsed.note is not None:
        if parsed.all_mapped:
            print("Warning: --note ignored when clearing all mapped instances", file=sys.stderr)
        flow.set_note(parsed.note)

    _print_affected(flow.affected)
    if not flow.request_confirm():
        if flow.preview.last_error is not None:
            print(f"Error: {flow.preview.last_error}", file=sys.stderr)
        else:
            print("Nothing to clear.", file=sys.stderr)
        flow.close()
        return 1

    if not parsed.yes:
        answer = input("Clear these task instances? [y/N] ").strip().lower()
        if answer not in ("y", "yes"):
            flow.cancel()
            flow.close()
            print("Aborted.", file=sys.stderr)
            return 1

    future = flow.confirm()
    if future is None:
        print("Error: clear could not be dispatched", file=sys.stderr)
        return 1
    if flow.committer.last_error is not None:
        print(f"Error: {flow.committer.last_error}", file=sys.stderr)
        return 1

    cleared = future.result()
    print(f"OK: {cleared.total_entries} task instance(s) cleared", file=sys.stderr)
    return 0


# =========================================================================
# Main entry point
# =========================================================================


def main(args: list[str] | None = None, service_factory: ServiceFactory | None = None) -> int:
    """Main entry point for the clearflow CLI.

    Supports subcommands ``preview`` and ``clear``.

    Args:
        args: Command-line arguments (defaults to sys.argv[1:])
        service_factory: Builds the clear service from parsed arguments
            (defaults to the REST service from the loaded config)

    Returns:
        Exit code (0 for success, non-zero for errors)
    """
    argv = args if args is not None else sys.argv[1:]
    if not argv or argv[0] not in _SUBCOMMANDS:
        print(f"Usage: clearflow {{{'|'.join(sorted(_SUBCOMMANDS))}}} ...", file=sys.stderr)
        return 2

    subcommand, remaining = argv[0], argv[1:]
    parser = argparse.ArgumentParser(
        prog=f"clearflow {subcommand}",
        description=(
            "Preview which task instances a clear would affect"
            if subcommand == "preview"
            else "Clear task instances so the engine re-runs them"
        ),
    )
    _build_target_parser(parser)
    if subcommand == "clear":
        _build_clear_parser(parser)
    _add_common_args(parser)
    parsed = parser.parse_args(remaining)
    _configure_logging(parsed)

    config = load_config(parsed.config)
    try:
        if service_factory is not None:
            service = service_factory(parsed)
        else:
            service = RestClearService(config.api)
        if subcommand == "preview":
            return _handle_preview(parsed, service, config.flow)
        return _handle_clear(parsed, service, config.flow)
    except ClearFlowError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
