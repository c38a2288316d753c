"""treeserve entry point.

Changes:
  - 2026-10-17: --check-storage flag gates requests on a root health check.
  - 2026-10-17: --audit-log flag appends denied-access events as JSONL.
  - 2026-10-17: Bind failures (port in use, privileged port) exit non-zero.
"""

import argparse
import logging
import sys

from treeserve import __version__
from treeserve.config import ServerConfig
from treeserve.errors import ConfigError
from treeserve.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="treeserve",
        description="Simple web file server: browse and download a directory tree",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  treeserve --root /var/www --port 8080
  treeserve --root /home/user/documents
  treeserve --root /mnt/external-drive --check-storage
""",
    )
    # Defaults of None fall through to TREESERVE_* env vars, then ServerConfig defaults.
    parser.add_argument("--root", default=None, help="Root directory to serve (default: .)")
    parser.add_argument("--port", "-p", type=int, default=None, help="Port to listen on (default: 8080)")
    parser.add_argument("--host", default=None, help="Address to bind (default: 0.0.0.0)")
    parser.add_argument(
        "--request-timeout",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Deadline for metadata and listing work (default: 30)",
    )
    parser.add_argument(
        "--transfer-timeout",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Deadline for a single file transfer (default: 60)",
    )
    parser.add_argument(
        "--shutdown-grace",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Time in-flight requests get to finish on shutdown (default: 30)",
    )
    parser.add_argument(
        "--check-storage",
        action="store_true",
        default=None,
        help="Verify the root is readable before every request (503 when not)",
    )
    parser.add_argument("--audit-log", default=None, metavar="PATH", help="Append denied-access events to PATH")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Logging level (default: INFO)",
    )
    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s {__version__}")
    return parser


def config_from_args(args: argparse.Namespace) -> ServerConfig:
    return ServerConfig.load(
        root_directory=args.root,
        port=args.port,
        host=args.host,
        request_timeout=args.request_timeout,
        transfer_timeout=args.transfer_timeout,
        shutdown_grace=args.shutdown_grace,
        check_storage=args.check_storage,
        audit_log=args.audit_log,
        log_level=args.log_level,
    )


def main(argv: list[str] | None = None) -> int:
    """Main entry point. Returns the process exit status."""
    args = build_parser().parse_args(argv)
    setup_logging(level=args.log_level or "INFO")

    try:
        config = config_from_args(args)
        logging.getLogger().setLevel(config.log_level.upper())

        from treeserve.server import run_server

        run_server(config)
    except ConfigError as e:
        logger.error("Failed to start server: %s", e)
        return 1
    except KeyboardInterrupt:
        logger.info("treeserve stopped.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
