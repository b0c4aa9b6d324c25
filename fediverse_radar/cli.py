"""Command-line entry point: ``fediverse-radar <command>``."""
from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Dict, List, Optional

from .config import (
    CHECK_INSTANCE_KEY,
    CONCURRENCY_KEY,
    FOLLOWING_EXPORT_KEY,
    OUTPUT_DIR_KEY,
    TARGET_ACCOUNT_KEY,
    WRITE_INSTANCE_KEY,
    RadarConfig,
    load_config,
)
from .console import CHECK, print_failure
from .errors import ConfigurationError, InputError
from .flows import (
    BskyToMastoOptions,
    MastoToBskyOptions,
    export_follows,
    run_bsky_to_masto,
    run_masto_to_bsky,
)
from .logging_utils import setup_radar_logging

LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_REPORT_FAILURE = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


def _add_shared_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", type=Path, default=None, help="key=value config file (default: ./radar.conf if present).")
    parser.add_argument("--check-instance", default=None, help="Mastodon instance used for existence checks.")
    parser.add_argument("--write-instance", default=None, help="Mastodon instance used in generated links.")
    parser.add_argument("--concurrency", type=int, default=None, help="Maximum probes in flight.")
    parser.add_argument("--output-dir", type=Path, default=None, help="Directory for reports and checkpoints.")
    parser.add_argument(
        "--resume",
        action="store_true",
        default=False,
        help="Reuse rows from the previous run's checkpoint instead of probing them again.",
    )
    parser.add_argument(
        "--log-level",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        default="INFO",
        help="Console log verbosity.",
    )
    parser.add_argument("--log-dir", type=Path, default=Path("logs"), help="Directory for the rotating log file.")
    parser.add_argument("--quiet", action="store_true", help="Suppress console logging (summary still printed).")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fediverse-radar",
        description="Find which of your follows are reachable across the Bridgy Fed bridge.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    masto = subparsers.add_parser(
        "masto-to-bsky",
        help="Check which followed Mastodon accounts are bridged into Bluesky.",
    )
    masto.add_argument("export_csv", type=Path, help="Mastodon following_accounts.csv export.")
    masto.add_argument("--actor", default=None, help="Bluesky handle whose follows mark rows as already followed.")
    masto.add_argument(
        "--omit-followed",
        action="store_true",
        help="Leave accounts the Bluesky actor already follows out of the report.",
    )
    masto.add_argument(
        "--confirm-profile-page",
        action="store_true",
        help="Also require the bsky.app profile page to load before counting an account as bridged.",
    )
    masto.add_argument(
        "--probe-followed",
        action="store_true",
        help="Check already-followed accounts too instead of trusting the follow list.",
    )
    _add_shared_options(masto)

    bsky = subparsers.add_parser(
        "bsky-to-masto",
        help="Check which followed Bluesky accounts are bridged into Mastodon.",
    )
    bsky.add_argument(
        "export_dir",
        type=Path,
        nargs="?",
        default=None,
        help="atproto export directory containing app.bsky.graph.follow records.",
    )
    bsky.add_argument(
        "-e",
        "--use-cached-handles",
        action="store_true",
        help="Reuse the handle list written by a previous run instead of resolving DIDs again.",
    )
    bsky.add_argument("--handle-cache", type=Path, default=None, help="Handle list path (default: <output-dir>/BlueSkyHandles.txt).")
    bsky.add_argument("--actor", default=None, help="Crawl this Bluesky account's follows live instead of reading an export.")
    bsky.add_argument("--limit", type=int, default=None, help="Only check the first N follows.")
    bsky.add_argument("--following-export", type=Path, default=None, help="Mastodon following CSV used to mark already-followed accounts.")
    bsky.add_argument(
        "--mastodon-account",
        default=None,
        help="Mastodon address whose public following list marks already-followed accounts.",
    )
    bsky.add_argument("--omit-followed", action="store_true", help="Leave already-followed accounts out of the report.")
    bsky.add_argument(
        "--probe-followed",
        action="store_true",
        help="Check already-followed accounts too instead of trusting the follow list.",
    )
    bsky.add_argument("--unbridged", action="store_true", help="Also write UnbridgedAccounts.csv.")
    bsky.add_argument(
        "--with-message",
        action="store_true",
        help="Add a bridge request message column to UnbridgedAccounts.csv.",
    )
    _add_shared_options(bsky)

    export = subparsers.add_parser("export-follows", help="Write a Bluesky account's follows as a handle list.")
    export.add_argument("actor", help="Bluesky handle or DID.")
    export.add_argument("--relation", choices=("follows", "followers"), default="follows")
    export.add_argument("--output", type=Path, default=None, help="Output file (default: <output-dir>/BlueSkyHandles.txt).")
    export.add_argument("--limit", type=int, default=None, help="Stop after N handles.")
    _add_shared_options(export)

    return parser


def _config_overrides(args: argparse.Namespace) -> Dict[str, Optional[str]]:
    return {
        CHECK_INSTANCE_KEY: args.check_instance,
        WRITE_INSTANCE_KEY: args.write_instance,
        CONCURRENCY_KEY: args.concurrency,
        OUTPUT_DIR_KEY: args.output_dir,
        FOLLOWING_EXPORT_KEY: getattr(args, "following_export", None),
        TARGET_ACCOUNT_KEY: getattr(args, "actor", None),
    }


def _dispatch(args: argparse.Namespace, config: RadarConfig) -> None:
    if args.command == "masto-to-bsky":
        run_masto_to_bsky(
            config,
            MastoToBskyOptions(
                export_csv=args.export_csv,
                actor=args.actor,
                omit_followed=args.omit_followed,
                confirm_profile_page=args.confirm_profile_page,
                probe_followed=args.probe_followed,
                resume=args.resume,
            ),
        )
    elif args.command == "bsky-to-masto":
        run_bsky_to_masto(
            config,
            BskyToMastoOptions(
                export_dir=args.export_dir,
                use_cached_handles=args.use_cached_handles,
                handle_cache=args.handle_cache,
                actor=args.actor,
                limit=args.limit,
                following_export=args.following_export,
                mastodon_account=args.mastodon_account,
                omit_followed=args.omit_followed,
                unbridged=args.unbridged,
                with_message=args.with_message,
                probe_followed=args.probe_followed,
                resume=args.resume,
            ),
        )
    else:
        path = export_follows(
            config,
            args.actor,
            relation=args.relation,
            output=args.output,
            limit=args.limit,
        )
        print(f"{CHECK} handle list written: {path}")


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    console_log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    if args.quiet:
        console_log_level = logging.WARNING
    setup_radar_logging(console_level=console_log_level, quiet=args.quiet, log_dir=args.log_dir)

    try:
        config = load_config(args.config, overrides=_config_overrides(args))
        _dispatch(args, config)
    except (ConfigurationError, InputError) as exc:
        LOGGER.error("%s", exc)
        print_failure(str(exc))
        return EXIT_USAGE
    except OSError as exc:
        LOGGER.exception("Failed writing reports")
        print_failure(f"could not write reports: {exc}")
        return EXIT_REPORT_FAILURE
    except KeyboardInterrupt:
        LOGGER.warning("Interrupted; finished rows remain in the checkpoint file")
        print_failure("interrupted")
        return EXIT_INTERRUPTED
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
