#!/usr/bin/env python3
"""Flow media services - command line entry point."""

import argparse
import json
import sys

from flowmedia.app import FlowMediaApp
from flowmedia.config import get_config
from flowmedia.events import EventBus
from flowmedia.exceptions import FlowMediaError
from flowmedia.logging import LinuxLogger, get_logger
from flowmedia.metadata import path_to_uri, locator_to_path

logger = get_logger(__name__)


def _print_result(result) -> None:
    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))


def cmd_scan_library(app: FlowMediaApp, args) -> int:
    _print_result(app.scanner.scan_library().result())
    return 0


def cmd_scan_folder(app: FlowMediaApp, args) -> int:
    _print_result(app.scanner.scan_directory(args.path).result())
    return 0


def cmd_scan_downloads(app: FlowMediaApp, args) -> int:
    _print_result(app.scanner.scan_downloads().result())
    return 0


def cmd_index(app: FlowMediaApp, args) -> int:
    """Populate the catalog from a folder tree."""
    root = locator_to_path(args.path)
    result = app.scanner.scan_directory(args.path).result()
    count = app.catalog.index_tracks(result.tracks, root=root)
    print(f"Indexed {count} tracks into {app.catalog.db_path}")
    return 0


def cmd_now_playing(app: FlowMediaApp, args) -> int:
    """Publish a session for one track and print the actions it receives."""
    import gi
    gi.require_version('GLib', '2.0')
    from gi.repository import GLib

    loop = GLib.MainLoop()
    service = app.now_playing
    service.add_listener(lambda action: print(action, flush=True))
    service.event_bus.subscribe(
        EventBus.SESSION_STATE_CHANGED,
        lambda state: logger.debug("Session state: %s", state),
    )

    track = path_to_uri(locator_to_path(args.track)) if args.track else None
    service.update_now_playing(
        title=args.title,
        artist=args.artist,
        album=args.album,
        cover_locator=args.cover,
        track_locator=track,
        is_playing=not args.paused,
        duration_seconds=args.duration,
    )

    def on_interrupt():
        service.stop_session()
        service.flush(timeout=2)
        # Let the queued D-Bus teardown run before leaving the loop
        GLib.timeout_add(200, loop.quit)
        return False

    GLib.unix_signal_add(GLib.PRIORITY_DEFAULT, 2, on_interrupt)  # SIGINT
    GLib.unix_signal_add(GLib.PRIORITY_DEFAULT, 15, on_interrupt)  # SIGTERM
    loop.run()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flowmedia",
        description="Media session and library scanning services for Flow",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("scan-library", help="List tracks, albums and artists from the catalog")
    p.set_defaults(func=cmd_scan_library)

    p = sub.add_parser("scan-folder", help="Scan a folder tree for audio files")
    p.add_argument("path", help="Folder path or file:// URI")
    p.set_defaults(func=cmd_scan_folder)

    p = sub.add_parser("scan-downloads", help="List catalog tracks in a downloads folder")
    p.set_defaults(func=cmd_scan_downloads)

    p = sub.add_parser("index", help="Rebuild the catalog from a folder tree")
    p.add_argument("path", help="Folder path or file:// URI")
    p.set_defaults(func=cmd_index)

    p = sub.add_parser("now-playing", help="Publish a media session until interrupted")
    p.add_argument("--title", required=True)
    p.add_argument("--artist")
    p.add_argument("--album")
    p.add_argument("--cover", help="Cover image path or URI")
    p.add_argument("--track", help="Audio file (embedded art fallback)")
    p.add_argument("--duration", type=float, default=0, help="Length in seconds")
    p.add_argument("--paused", action="store_true", help="Start paused")
    p.set_defaults(func=cmd_now_playing)

    return parser


def main(argv=None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    # Initialize config (creates directories, loads settings)
    config = get_config()

    # Initialize logging (uses config for log directory)
    LinuxLogger(log_dir=config.log_dir)

    app = FlowMediaApp(config)
    try:
        return args.func(app, args)
    except FlowMediaError as e:
        print(f"flowmedia: {e}", file=sys.stderr)
        return 1
    finally:
        app.shutdown()


if __name__ == '__main__':
    sys.exit(main())
