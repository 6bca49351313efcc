"""
M365 License Tools — Command-line entry point

Usage:
    python -m m365_license_tools skus
    python -m m365_license_tools export --sku SPE_E5
    python -m m365_license_tools export --sku SPE_E5 --include-inherited --format csv
    python -m m365_license_tools remove --input direct_license_assignments.csv
    python -m m365_license_tools remove --input users.csv --sku SPE_E5 --what-if

Profile management:
    python -m m365_license_tools profile add <name> --tenant-id ... --client-id ...
    python -m m365_license_tools profile list
    python -m m365_license_tools profile remove <name>
    python -m m365_license_tools profile set-default <name>

Exit codes: 0 ok, 1 configuration/auth/input error, 2 removals failed, 130 interrupted.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .config import ToolConfig, CertificateAuth, DelegatedAuth, ConfigError, RetryConfig
from .logging_config import setup_logging
from .safety.guardian import SafetyGuardian, SafetyViolation, MODE_READ_ONLY, MODE_LICENSE_REMOVAL
from .auth.authenticator import Authenticator, AuthenticationError
from .graph.client import GraphClient, GraphAPIError
from .licensing import (
    SkuCatalog,
    LicenseResolutionError,
    DirectAssignmentCollector,
    LicenseRemover,
    CsvFormatError,
    read_removal_csv,
)
from .reporting import (
    export_assignments,
    export_removal_results,
    format_assignment_table,
    format_sku_table,
    format_removal_summary,
)
from .profiles import ProfileStore, TenantProfile, resolve_profile

logger = logging.getLogger("m365_license_tools.cli")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_FAILURES = 2
EXIT_INTERRUPTED = 130


# ---------------------------------------------------------------------------
# Profile management sub-commands
# ---------------------------------------------------------------------------

def _cmd_profile(args: argparse.Namespace) -> int:
    """Handle `profile add|list|remove|set-default` sub-commands."""
    action = args.profile_action

    if action == "list":
        return _profile_list()
    elif action == "add":
        return _profile_add(args)
    elif action == "remove":
        return _profile_remove(args)
    elif action == "set-default":
        return _profile_set_default(args)
    print("Usage: python -m m365_license_tools profile {add|list|remove|set-default}")
    return EXIT_OK


def _profile_list() -> int:
    store = ProfileStore.load()
    profiles = store.list_profiles()
    if not profiles:
        print("No profiles configured. Add one with:\n")
        print("  python -m m365_license_tools profile add <name> \\")
        print("    --tenant-id <GUID> --client-id <GUID> --cert-path ./base64.txt")
        return EXIT_OK

    print(f"\n  {'Name':<20s} {'Tenant ID':<38s} {'Client ID':<38s} {'Cert Path':<30s} {'Default'}")
    print(f"  {'─'*20} {'─'*38} {'─'*38} {'─'*30} {'─'*7}")
    for p in profiles:
        default_marker = "  ✓" if p.name == store.default_profile else ""
        display = p.tenant_display_name or ""
        name_col = f"{p.name}" + (f" ({display})" if display else "")
        print(f"  {name_col:<20s} {p.tenant_id:<38s} {p.client_id:<38s} {p.cert_path:<30s}{default_marker}")
    print()
    return EXIT_OK


def _profile_add(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    name = args.profile_name
    if store.get(name):
        print(f"  Profile '{name}' already exists. It will be overwritten.")

    profile = TenantProfile(
        name=name,
        tenant_id=args.tenant_id,
        client_id=args.client_id,
        cert_path=args.cert_path or "./base64.txt",
        tenant_display_name=args.display_name or "",
        notes=args.notes or "",
    )
    set_as_default = args.set_default or not store.profiles
    store.add(profile, set_default=set_as_default)
    print(f"  ✅ Profile '{name}' saved.")
    if set_as_default:
        print(f"  ✅ Set as default profile.")
    return EXIT_OK


def _profile_remove(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    if store.remove(args.profile_name):
        print(f"  ✅ Profile '{args.profile_name}' removed.")
        return EXIT_OK
    print(f"  ❌ Profile '{args.profile_name}' not found.")
    return EXIT_ERROR


def _profile_set_default(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    if store.set_default(args.profile_name):
        print(f"  ✅ Default profile set to '{args.profile_name}'.")
        return EXIT_OK
    print(f"  ❌ Profile '{args.profile_name}' not found.")
    return EXIT_ERROR


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def _tenant_options() -> argparse.ArgumentParser:
    """Options shared by every command that talks to a tenant."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--profile", "-p",
        default=None,
        help="Tenant profile name to use (run 'profile list' to see available)",
    )
    common.add_argument("--config", "-c", type=Path, help="Path to JSON configuration file")
    common.add_argument(
        "--delegated",
        action="store_true",
        help="Use delegated (device-code) authentication instead of certificate",
    )
    common.add_argument("--cert-path", type=Path, help="Path to base64-encoded certificate file")
    common.add_argument("--tenant-id", default=None, help="Tenant ID (overrides profile)")
    common.add_argument("--client-id", default=None, help="Client ID (overrides profile)")
    common.add_argument(
        "--output-dir", "-o",
        type=Path,
        default=None,
        help="Directory for CSV output (default: current directory)",
    )
    common.add_argument("--max-attempts", type=int, default=None, help="Attempts per throttled call")
    common.add_argument("--max-delay", type=float, default=None, help="Backoff ceiling in seconds")
    common.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    common.add_argument("--log-file", default=None, help="Also write a debug log to this file")
    return common


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="m365_license_tools",
        description="Find and remove directly assigned Microsoft 365 licenses",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)
    common = _tenant_options()

    # --- skus ---
    subparsers.add_parser("skus", parents=[common], help="List the tenant's subscribed SKUs")

    # --- export ---
    exp = subparsers.add_parser(
        "export",
        parents=[common],
        help="List users holding a license by direct assignment",
    )
    exp.add_argument("--sku", required=True, help="SKU GUID or part number (e.g. SPE_E5)")
    exp.add_argument(
        "--include-inherited",
        action="store_true",
        help="Also list group-inherited assignments (AssignedDirectly=False)",
    )
    exp.add_argument("--exclude-disabled", action="store_true", help="Skip disabled accounts")
    exp.add_argument(
        "--format",
        choices=["table", "csv", "both"],
        default="both",
        help="Console table, CSV file, or both (default: both)",
    )
    exp.add_argument("--output-file", default="", help="CSV file name inside --output-dir")

    # --- remove ---
    rem = subparsers.add_parser(
        "remove",
        parents=[common],
        help="Remove a license from every user listed in a CSV",
    )
    rem.add_argument("--input", "-i", type=Path, required=True, help="Input CSV file")
    rem.add_argument("--sku", default="", help="License to remove; overrides the CSV license column")
    rem.add_argument("--what-if", action="store_true", help="Resolve and report without removing")
    rem.add_argument("--stop-on-error", action="store_true", help="Abort the run at the first failed row")
    rem.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")

    # --- profile ---
    prof_parser = subparsers.add_parser("profile", help="Manage tenant profiles")
    prof_sub = prof_parser.add_subparsers(dest="profile_action", help="Profile actions")

    add_p = prof_sub.add_parser("add", help="Add or update a tenant profile")
    add_p.add_argument("profile_name", help="Short name for the profile (e.g. 'contoso-prod')")
    add_p.add_argument("--tenant-id", required=True, help="Entra tenant ID (GUID)")
    add_p.add_argument("--client-id", required=True, help="App registration client ID (GUID)")
    add_p.add_argument("--cert-path", default="./base64.txt", help="Path to base64-encoded PFX")
    add_p.add_argument("--display-name", help="Friendly tenant display name")
    add_p.add_argument("--notes", help="Optional admin notes")
    add_p.add_argument("--set-default", action="store_true", help="Set as default profile")

    prof_sub.add_parser("list", help="List all configured profiles")

    rm_p = prof_sub.add_parser("remove", help="Remove a profile")
    rm_p.add_argument("profile_name", help="Name of the profile to remove")

    sd_p = prof_sub.add_parser("set-default", help="Set the default profile")
    sd_p.add_argument("profile_name", help="Name of the profile to set as default")

    return parser.parse_args(argv)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def build_config(args: argparse.Namespace) -> ToolConfig:
    """Build configuration from profile, CLI args, or config file."""
    if args.config:
        config = ToolConfig.from_file(args.config)
    else:
        config = ToolConfig()

    if args.delegated:
        config.auth.mode = "delegated"

    # Resolution order: --profile, ad-hoc ids, config file, default profile
    profile = None
    if args.profile:
        profile = resolve_profile(args.profile)
        if not profile:
            raise ConfigError(
                f"Profile '{args.profile}' not found. Use 'profile list' to see available profiles."
            )
    elif not args.config and not (args.tenant_id and args.client_id):
        profile = resolve_profile()

    cert_path = str(args.cert_path) if args.cert_path else ""
    if profile:
        tenant_id = args.tenant_id or profile.tenant_id
        client_id = args.client_id or profile.client_id
        cert_path = cert_path or profile.resolve_cert_path()
    elif args.tenant_id and args.client_id:
        tenant_id = args.tenant_id
        client_id = args.client_id
        cert_path = cert_path or "./base64.txt"
    elif config.auth.certificate or config.auth.delegated:
        source = config.auth.certificate or config.auth.delegated
        tenant_id = args.tenant_id or source.tenant_id
        client_id = args.client_id or source.client_id
        if config.auth.certificate:
            cert_path = cert_path or config.auth.certificate.certificate_path
    else:
        raise ConfigError(
            "No tenant credentials found. Use --profile <name>, "
            "--tenant-id X --client-id Y, or --config config.json"
        )

    if config.auth.mode == "delegated":
        scopes = config.auth.delegated.scopes if config.auth.delegated else None
        config.auth.delegated = DelegatedAuth(tenant_id=tenant_id, client_id=client_id)
        if scopes:
            config.auth.delegated.scopes = scopes
    else:
        password = config.auth.certificate.certificate_password if config.auth.certificate else ""
        config.auth.certificate = CertificateAuth(
            tenant_id=tenant_id,
            client_id=client_id,
            certificate_path=cert_path or "./base64.txt",
            certificate_password=password,
        )

    if args.max_attempts is not None or args.max_delay is not None:
        config.retry = RetryConfig(
            max_attempts=args.max_attempts if args.max_attempts is not None else config.retry.max_attempts,
            initial_delay=config.retry.initial_delay,
            max_delay=args.max_delay if args.max_delay is not None else config.retry.max_delay,
            multiplier=config.retry.multiplier,
        )
    if args.output_dir:
        config.output.base_dir = str(args.output_dir)
    config.verbose = config.verbose or args.verbose
    if args.log_file:
        config.log_file = args.log_file
    return config


async def _authenticate(config: ToolConfig) -> str:
    print("\n🔐 Authenticating...")
    token = await Authenticator(config.auth).acquire_token()
    print("✅ Authentication successful.")
    return token


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

async def run_skus(config: ToolConfig) -> int:
    guardian = SafetyGuardian(MODE_READ_ONLY)
    token = await _authenticate(config)
    async with GraphClient(access_token=token, guardian=guardian, retry=config.retry) as client:
        catalog = await SkuCatalog.load(client)
    print()
    print(format_sku_table(catalog.skus))
    print()
    return EXIT_OK


async def run_export(args: argparse.Namespace, config: ToolConfig) -> int:
    guardian = SafetyGuardian(MODE_READ_ONLY)
    guardian.print_banner()
    token = await _authenticate(config)

    async with GraphClient(access_token=token, guardian=guardian, retry=config.retry) as client:
        catalog = await SkuCatalog.load(client)
        sku = catalog.resolve(args.sku)
        print(f"\n🔎 Scanning users for {sku.label} ({sku.sku_id})...")
        collector = DirectAssignmentCollector(
            client,
            sku,
            include_inherited=args.include_inherited,
            exclude_disabled=args.exclude_disabled,
        )
        records = await collector.collect()
        stats = client.get_stats()

    print(f"  Users scanned: {collector.users_scanned} "
          f"({stats['total_requests']} requests, {stats['throttle_events']} throttled)\n")

    if args.format in ("table", "both"):
        print(format_assignment_table(records))
        print()
    if args.format in ("csv", "both"):
        path = export_assignments(
            records, config.output.output_dir, config.output.run_id, args.output_file
        )
        print(f"  📊 CSV: {path}")
    return EXIT_OK


def _confirm(count: int, label: str) -> bool:
    try:
        answer = input(f"\n  Remove {label} from {count} user(s)? Type 'yes' to continue: ")
    except EOFError:
        return False
    return answer.strip().lower() == "yes"


def _print_result(result) -> None:
    icon = "✅" if result.succeeded else "❌"
    detail = f" — {result.message}" if result.message and not result.succeeded else ""
    print(f"  {icon} {result.outcome:<12s} {result.user_principal_name}{detail}")


async def run_remove(args: argparse.Namespace, config: ToolConfig) -> int:
    requests = read_removal_csv(args.input, license_override=args.sku)
    if not requests:
        print(f"\n⚠  No usable rows in {args.input}. Nothing to do.")
        return EXIT_OK

    guardian = SafetyGuardian(MODE_LICENSE_REMOVAL)
    guardian.print_banner(what_if=args.what_if)
    print(f"\n📋 Input:  {args.input} ({len(requests)} row(s))")

    if not args.what_if and not args.yes:
        label = args.sku or "the listed license(s)"
        if not _confirm(len(requests), label):
            print("  Cancelled. No changes were made.")
            return EXIT_OK

    token = await _authenticate(config)

    async with GraphClient(access_token=token, guardian=guardian, retry=config.retry) as client:
        catalog = await SkuCatalog.load(client)
        if args.sku:
            # Fail fast on a bad override instead of failing every row
            catalog.resolve(args.sku)
        remover = LicenseRemover(
            client,
            catalog,
            retry=config.retry,
            what_if=args.what_if,
            stop_on_error=args.stop_on_error,
            on_result=_print_result,
        )
        print()
        summary = await remover.run(requests)

    paths = export_removal_results(summary, config.output.output_dir, config.output.run_id)

    print("\n" + "=" * 70)
    print(" REMOVAL SUMMARY" + (" (WHAT-IF)" if args.what_if else ""))
    print("=" * 70)
    print(format_removal_summary(summary))
    print(f"\n  📊 Successes: {paths[0]}")
    print(f"  📊 Failures:  {paths[1]}\n")

    if summary.interrupted:
        return EXIT_INTERRUPTED
    return EXIT_FAILURES if summary.failures else EXIT_OK


async def main_async(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)

    if args.command == "profile":
        return _cmd_profile(args)

    try:
        config = build_config(args)
        setup_logging(config.verbose, config.log_file or None)
        if args.command == "skus":
            return await run_skus(config)
        if args.command == "export":
            return await run_export(args, config)
        return await run_remove(args, config)
    except (ConfigError, AuthenticationError, CsvFormatError, LicenseResolutionError) as e:
        print(f"\n❌ {e}")
        return EXIT_ERROR
    except GraphAPIError as e:
        logger.debug("Graph request failed", exc_info=True)
        print(f"\n❌ {e}")
        return EXIT_ERROR
    except SafetyViolation as e:
        print(f"\n❌ {e}")
        return EXIT_ERROR


def main(argv: Optional[list[str]] = None):
    """Synchronous entry point for `python -m m365_license_tools`."""
    try:
        code = asyncio.run(main_async(argv))
    except KeyboardInterrupt:
        print("\n  Interrupted.")
        code = EXIT_INTERRUPTED
    sys.exit(code)


if __name__ == "__main__":
    main()
