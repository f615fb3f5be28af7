from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Sequence

from guest_checkin.app_logging import configure_logging
from guest_checkin.config import settings as settings_module
from guest_checkin.data import Database
from guest_checkin.models import CheckinError, GuestRecord, SourceChannel
from guest_checkin.services import (
    AdmissionPipeline,
    AttendanceService,
    CameraDecoder,
    GuestStore,
    ScanSessionController,
    ScanState,
    SqliteGuestStore,
    SupabaseGuestStore,
    table_tier,
)
from guest_checkin.utils import format_timestamp

logger = logging.getLogger("guest_checkin.main")


def build_store(config: settings_module.Settings) -> GuestStore:
    if config.store_backend == "supabase":
        if not config.supabase_url or not config.supabase_key:
            raise SystemExit("STORE_BACKEND=supabase requires SUPABASE_URL and SUPABASE_KEY.")
        return SupabaseGuestStore(
            config.supabase_url,
            config.supabase_key,
            table=config.supabase_table,
            timeout_seconds=config.io_timeout_seconds,
        )
    if config.store_backend != "sqlite":
        raise SystemExit(f"Unknown STORE_BACKEND {config.store_backend!r}.")

    store = SqliteGuestStore(Database(config.database_path))
    store.initialize()
    return store


def _describe_guest(guest: GuestRecord) -> str:
    tier = table_tier(guest.table_label)
    table = guest.table_label or "-"
    if tier != "standard":
        table = f"{table} [{tier}]"
    return (
        f"{guest.display_name} | {guest.phone_number or '-'} | "
        f"{guest.party_size} guest(s) | table {table} | {format_timestamp(guest.admitted_at)}"
    )


async def run_scanner(config: settings_module.Settings, store: GuestStore) -> int:
    store_settings = settings_module.user_settings_store

    def _on_admitted(record: GuestRecord) -> None:
        print(f"ADMITTED  {_describe_guest(record)}", flush=True)

    def _on_duplicate(identity: str) -> None:
        print(f"DUPLICATE invitation {identity} was already used.", flush=True)

    def _on_error(kind: str, message: str) -> None:
        print(f"ERROR     [{kind}] {message}", flush=True)

    def _on_state(state: ScanState) -> None:
        logger.info("Camera %s", state.value)

    controller = ScanSessionController(
        CameraDecoder(probe_limit=config.camera_probe_limit),
        AdmissionPipeline(store, timeout_seconds=config.io_timeout_seconds),
        throttle_seconds=config.scan_throttle_seconds,
        cooldown_seconds=config.admission_cooldown_seconds,
        io_timeout_seconds=config.io_timeout_seconds,
        preferred_device_id=store_settings.get("last_camera_device"),
        on_admitted=_on_admitted,
        on_duplicate=_on_duplicate,
        on_error=_on_error,
        on_camera_state_changed=_on_state,
    )

    if not await controller.start():
        return 1

    store_settings.update(last_camera_device=controller.selected_device_id)
    hint = "Commands: s = switch camera, q = quit" if controller.can_switch else "Commands: q = quit"
    print(hint, flush=True)

    loop = asyncio.get_running_loop()
    try:
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            command = line.strip().lower()
            if not line or command in ("q", "quit", "exit"):
                break
            if command in ("s", "switch"):
                if not controller.can_switch:
                    print("Only one camera available.", flush=True)
                    continue
                if await controller.switch_device():
                    store_settings.update(last_camera_device=controller.selected_device_id)
            elif command in ("r", "retry") and controller.state is ScanState.ERROR:
                if await controller.start():
                    store_settings.update(last_camera_device=controller.selected_device_id)

            if controller.state is ScanState.ERROR:
                print("Camera stopped. Type 'r' to retry or 'q' to quit.", flush=True)
    finally:
        await controller.stop()
    return 0


def _cmd_init_db(config: settings_module.Settings, _args: argparse.Namespace) -> int:
    applied = Database(config.database_path).initialize()
    print(f"Database ready at {config.database_path} ({len(applied)} migration(s) applied).")
    return 0


def _cmd_scan(config: settings_module.Settings, _args: argparse.Namespace) -> int:
    store = build_store(config)
    return asyncio.run(run_scanner(config, store))


def _cmd_list(config: settings_module.Settings, args: argparse.Namespace) -> int:
    service = AttendanceService(build_store(config), page_size=config.attendance_page_size)
    source = SourceChannel(args.source) if args.source else None
    page = service.paginate(service.list_guests(source), args.page)

    if not page.items:
        print("No guests checked in yet.")
        return 0
    for guest in page.items:
        print(_describe_guest(guest))
    print(f"Page {page.page} of {page.total_pages}")
    return 0


def _cmd_export(config: settings_module.Settings, args: argparse.Namespace) -> int:
    service = AttendanceService(build_store(config))
    count = service.export_csv(Path(args.path))
    print(f"Exported {count} guest(s) to {args.path}")
    return 0


def _cmd_add_manual(config: settings_module.Settings, args: argparse.Namespace) -> int:
    service = AttendanceService(build_store(config))
    try:
        guest = service.record_manual_guest(
            args.name,
            phone_number=args.phone,
            party_size=args.guests,
            table_label=args.table,
        )
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    print(f"Recorded {_describe_guest(guest)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="guest-checkin", description="QR guest check-in for events.")
    parser.add_argument("--log-level", default=None, help="Logging level (default: LOG_LEVEL or INFO)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create or migrate the local guest database").set_defaults(
        handler=_cmd_init_db
    )
    subparsers.add_parser("scan", help="Check in guests with the camera").set_defaults(handler=_cmd_scan)

    list_parser = subparsers.add_parser("list", help="Show checked-in guests")
    list_parser.add_argument("--source", choices=[channel.value for channel in SourceChannel])
    list_parser.add_argument("--page", type=int, default=1)
    list_parser.set_defaults(handler=_cmd_list)

    export_parser = subparsers.add_parser("export", help="Export the guest list as CSV")
    export_parser.add_argument("path", help="Destination CSV file")
    export_parser.set_defaults(handler=_cmd_export)

    manual_parser = subparsers.add_parser("add-manual", help="Check in a guest without a QR code")
    manual_parser.add_argument("name")
    manual_parser.add_argument("--phone", default="")
    manual_parser.add_argument("--guests", type=int, default=0)
    manual_parser.add_argument("--table", default="")
    manual_parser.set_defaults(handler=_cmd_add_manual)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = settings_module.refresh_settings_from_store()
    configure_logging(args.log_level or config.log_level)
    logger.debug(config.describe())

    try:
        return args.handler(config, args)
    except CheckinError as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
