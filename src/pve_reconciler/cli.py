"""Proxmox VE VM reconciler CLI (pvr).

Usage:
    pvr list                                   # Show guests and their tracked attributes
    pvr run -o cpu-v2-to-v3 -s replace 101 102 # Run a batch non-interactively
    pvr apply-plan plan.yaml                   # Run a batch described in a YAML plan
    pvr interactive                            # Menu driven setup
"""

from __future__ import annotations

import dataclasses
from pathlib import Path

import click

from .config import Config, ConfigurationError
from .decision import Operation, OperationKind
from .errors import ConfigUnavailable
from .inspector import ConfigInspector
from .inventory import ResourceInventory, VirtualMachine
from .main import EXIT_FAILURE, EXIT_OK, execute_batch, preflight, setup_logging
from .orchestrator import BatchOptions, BatchResult, EntityStatus
from .plan_loader import PlanLoadError, load_plan
from .qm import QmClient, QmCommandError
from .setup_flow import (
    OPERATION_MENU,
    SNAPSHOT_MENU,
    VERSION_MENU,
    SetupStage,
    SetupState,
    build_options,
    choose_operation,
    choose_snapshot_policy,
    configure_machine_version,
    configure_memory,
    confirm_and_run,
    select_entities,
)
from .snapshots import SnapshotPolicy
from .vmconfig import VmConfigStore

SEPARATOR = "-" * 66


def _runtime(ctx: click.Context) -> tuple[Config, QmClient]:
    return ctx.obj["config"], ctx.obj["qm"]


def _require_privileges(ctx: click.Context) -> None:
    config, qm = _runtime(ctx)
    code = preflight(config, qm)
    if code != EXIT_OK:
        click.secho(
            "Insufficient privileges: run as root on a Proxmox VE host.", fg="red", err=True
        )
        ctx.exit(code)


def _describe_vm(inspector: ConfigInspector, vm: VirtualMachine) -> str:
    try:
        return inspector.inspect(vm.vmid).describe()
    except ConfigUnavailable:
        return click.style("Config file not found", fg="red")


def _confirm_each(vm: VirtualMachine) -> bool:
    return click.confirm(f"Proceed with operation for VM {vm.vmid}?", default=True)


def _print_summary(result: BatchResult | None) -> None:
    if result is None:
        return
    click.echo(SEPARATOR)
    click.echo(
        f"Processed: {len(result.outcomes)}  "
        f"Succeeded: {result.count(EntityStatus.SUCCEEDED)}  "
        f"Already correct: {result.count(EntityStatus.SKIPPED_NO_OP)}  "
        f"Declined: {result.count(EntityStatus.SKIPPED_DECLINED)}  "
        f"Failed: {result.count(EntityStatus.FAILED)}"
    )
    if result.success:
        click.secho("✓ Batch completed without failures", fg="green")
        return
    click.secho("SUMMARY OF FAILURES", fg="red")
    click.secho(
        "The following operations failed and may require manual intervention:", fg="yellow"
    )
    for line in result.summary_lines():
        click.secho(f"  {line}", fg="red")


def _confirm_start(options: BatchOptions, assume_yes: bool) -> bool:
    """Warn about shutdowns and ask for the final go-ahead."""
    click.secho(
        "This will shut down all running selected VMs that require changes.", fg="yellow"
    )
    if options.effective_snapshot_policy == SnapshotPolicy.REPLACE_LAST:
        click.secho(
            "It may also delete and recreate snapshots, which is a destructive action.",
            fg="yellow",
        )
    if options.dry_run:
        click.secho("DRY RUN mode: no changes will be made.", fg="green")
        return True
    if assume_yes:
        return True
    click.secho("DRY RUN mode is disabled. Actual changes will be performed.", fg="yellow")
    return click.confirm("Are you sure you want to continue?", default=True)


def _run_and_exit(
    ctx: click.Context,
    options: BatchOptions,
    vmids: tuple[str, ...] | list[int] | tuple[int, ...],
) -> None:
    config, qm = _runtime(ctx)
    click.secho(
        "Interrupting (Ctrl+C) from this point may leave a VM in a stopped state.", fg="yellow"
    )
    confirm = _confirm_each if options.confirm_each else None
    # No ids on the command line or in the plan means every guest
    code, result = execute_batch(config, qm, options, list(vmids) or None, confirm=confirm)
    _print_summary(result)
    ctx.exit(code)


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="pvr")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also append log records to this file.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(ctx: click.Context, log_file: Path | None, verbose: bool) -> None:
    """Proxmox VE VM reconciler (pvr).

    Batch-edits guest machine type, CPU model and display memory, stopping
    and restarting guests around each change and managing snapshots.
    """
    ctx.ensure_object(dict)
    if "config" not in ctx.obj:
        try:
            config = Config.from_env()
            if log_file is not None:
                config = dataclasses.replace(config, log_file=log_file)
            if verbose:
                config = dataclasses.replace(config, log_level="DEBUG")
        except ConfigurationError as e:
            raise click.ClickException(str(e)) from e
        ctx.obj["config"] = config
    if "qm" not in ctx.obj:
        ctx.obj["qm"] = QmClient.from_config(ctx.obj["config"])
    setup_logging(ctx.obj["config"])


# =============================================================================
# Inventory
# =============================================================================


@cli.command("list")
@click.pass_context
def list_vms(ctx: click.Context) -> None:
    """Show guests with machine type, CPU model and VGA settings."""
    _require_privileges(ctx)
    config, qm = _runtime(ctx)
    store = VmConfigStore(config.config_dir)
    inspector = ConfigInspector(store)
    try:
        vms = ResourceInventory(qm, store).discover()
    except QmCommandError as e:
        raise click.ClickException(str(e)) from e

    click.echo("Available VMs on this host:")
    click.echo(SEPARATOR)
    for vm in vms:
        click.echo(f"  VM {vm.vmid} ({vm.name}) | {_describe_vm(inspector, vm)}")
    click.echo(SEPARATOR)


# =============================================================================
# Batch Commands
# =============================================================================


@cli.command()
@click.option(
    "--operation",
    "-o",
    "operation_kind",
    type=click.Choice([kind.value for kind in OperationKind]),
    required=True,
    help="Operation to apply.",
)
@click.option(
    "--machine-version",
    default=None,
    help="Explicit machine type (e.g. pc-q35-8.1) instead of the latest version.",
)
@click.option("--memory", "memory_mb", type=int, default=None, help="Display memory in MB.")
@click.option(
    "--snapshot",
    "-s",
    "snapshot_policy",
    type=click.Choice([policy.value for policy in SnapshotPolicy]),
    default=SnapshotPolicy.DO_NOTHING.value,
    show_default=True,
    help="Snapshot action after a successful change.",
)
@click.option("--dry-run", is_flag=True, help="Report intended actions without changing anything.")
@click.option("--confirm-each", is_flag=True, help="Ask before changing each VM.")
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Skip the final confirmation.")
@click.argument("vmids", nargs=-1)
@click.pass_context
def run(
    ctx: click.Context,
    operation_kind: str,
    machine_version: str | None,
    memory_mb: int | None,
    snapshot_policy: str,
    dry_run: bool,
    confirm_each: bool,
    assume_yes: bool,
    vmids: tuple[str, ...],
) -> None:
    """Run a batch on VMIDS (all guests when none are given)."""
    try:
        operation = Operation(
            kind=OperationKind(operation_kind),
            machine_version=machine_version,
            memory_mb=memory_mb,
        )
    except ValueError as e:
        raise click.BadParameter(str(e)) from e

    options = BatchOptions(
        operation=operation,
        snapshot_policy=SnapshotPolicy(snapshot_policy),
        dry_run=dry_run,
        confirm_each=confirm_each,
    )
    _require_privileges(ctx)
    if not _confirm_start(options, assume_yes):
        click.echo("Aborting.")
        ctx.exit(EXIT_OK)
    _run_and_exit(ctx, options, vmids)


@cli.command("apply-plan")
@click.argument("plan_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Skip the final confirmation.")
@click.pass_context
def apply_plan(ctx: click.Context, plan_file: Path, assume_yes: bool) -> None:
    """Run the batch described in PLAN_FILE."""
    try:
        plan = load_plan(plan_file)
    except PlanLoadError as e:
        raise click.ClickException(str(e)) from e

    options = plan.to_options()
    _require_privileges(ctx)
    if not _confirm_start(options, assume_yes):
        click.echo("Aborting.")
        ctx.exit(EXIT_OK)
    _run_and_exit(ctx, options, plan.vmids)


# =============================================================================
# Interactive Setup
# =============================================================================


def _pick_vms(vms: list[VirtualMachine], inspector: ConfigInspector) -> list[int] | None:
    """Numbered selection.

    Returns None when the answer is empty (every guest). Invalid numbers are
    dropped, so an answer without a valid number selects nothing.
    """
    click.echo("Available VMs on this host:")
    click.echo(SEPARATOR)
    for index, vm in enumerate(vms, start=1):
        click.echo(f"  [{index}] - VM {vm.vmid} ({vm.name}) | {_describe_vm(inspector, vm)}")
    click.echo(SEPARATOR)
    click.echo("Enter the numbers of the VMs you want to process, separated by spaces.")
    raw = click.prompt("Or press [Enter] to process all VMs", default="", show_default=False)
    if not raw.strip():
        return None

    selected: list[int] = []
    for token in raw.split():
        if token.isdigit() and 0 < int(token) <= len(vms):
            selected.append(vms[int(token) - 1].vmid)
        else:
            click.secho(f"Invalid number '{token}' will be ignored.", fg="yellow")
    return selected


def _menu(title: str, entries: dict[str, str]) -> None:
    click.echo(title)
    for key, label in entries.items():
        click.echo(f"  [{key}] {label}")


@cli.command()
@click.argument("vmids", nargs=-1)
@click.pass_context
def interactive(ctx: click.Context, vmids: tuple[str, ...]) -> None:
    """Menu driven setup, optionally restricted to VMIDS."""
    _require_privileges(ctx)
    config, qm = _runtime(ctx)
    store = VmConfigStore(config.config_dir)
    inspector = ConfigInspector(store)
    inventory = ResourceInventory(qm, store)

    try:
        if vmids:
            chosen = [vm.vmid for vm in inventory.select(vmids)]
        else:
            picked = _pick_vms(inventory.discover(), inspector)
            chosen = [vm.vmid for vm in inventory.select(picked)]
    except QmCommandError as e:
        raise click.ClickException(str(e)) from e

    state = select_entities(SetupState(), chosen)
    while state.stage not in (SetupStage.DONE, SetupStage.EXIT):
        if state.error:
            click.secho(state.error, fg="red")

        match state.stage:
            case SetupStage.CHOOSE_OPERATION:
                click.echo(f"VMs to process: {' '.join(str(v) for v in state.vmids)}")
                _menu(
                    "Select operation mode for the selected VMs:",
                    {key: label for key, (label, _) in OPERATION_MENU.items()},
                )
                state = choose_operation(state, click.prompt("Your choice"))
            case SetupStage.CONFIGURE_DETAILS:
                if state.operation == OperationKind.SET_DISPLAY_MEMORY:
                    raw = click.prompt(
                        "Enter desired SPICE memory in MB (e.g., 32, 64, 128) or 'b' to go back"
                    )
                    state = configure_memory(state, raw)
                else:
                    _menu("Select machine version option:", VERSION_MENU)
                    choice = click.prompt("Your choice", default="1")
                    version = None
                    if choice.strip() == "2":
                        version = click.prompt(
                            "Enter the full machine type string (e.g., pc-q35-8.1)"
                        )
                    state = configure_machine_version(state, choice, version)
            case SetupStage.CHOOSE_SNAPSHOT_POLICY:
                _menu(
                    "Snapshot action for all affected VMs:",
                    {key: label for key, (label, _) in SNAPSHOT_MENU.items()},
                )
                state = choose_snapshot_policy(state, click.prompt("Your choice"))
            case SetupStage.CONFIRM_AND_RUN:
                blanket = False
                if len(state.vmids) > 1:
                    blanket = click.confirm(
                        "Apply changes to all selected VMs without individual confirmation?",
                        default=True,
                    )
                dry_run = click.confirm("Enable Dry Run mode?", default=False)
                preview = dataclasses.replace(state, stage=SetupStage.DONE, dry_run=dry_run)
                proceed = _confirm_start(build_options(preview), assume_yes=False)
                state = confirm_and_run(
                    state, proceed=proceed, dry_run=dry_run, confirm_each=not blanket
                )

    if state.stage == SetupStage.EXIT:
        if state.error:
            click.secho(state.error, fg="red", err=True)
            ctx.exit(EXIT_FAILURE)
        click.echo("Exiting as requested.")
        ctx.exit(EXIT_OK)

    _run_and_exit(ctx, build_options(state), state.vmids)


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
