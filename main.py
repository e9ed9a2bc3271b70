#!/usr/bin/env python3
"""
Blob Data Service - Main entry point

Usage:
    blobd [<port>] \
        --data-dir=<DATA_DIR> \
        --temp-dir=<TEMP_DIR> \
        --tokens=<TOKEN1>:<USER1>,<TOKEN2>:<USER2>,... \
        [--checksum=md5|sha1|sha256|adler32] \
        [--verify-client-checksum] \
        [--max-upload-size=<BYTES>] \
        [--log-level=<LEVEL>]

Every option can also be set with the BLOBD_* environment variable of the
same name, e.g. BLOBD_DATA_DIR or BLOBD_VERIFY_CLIENT_CHECKSUM=1.
"""

import argparse
import logging
import os
import sys
import uvicorn
from typing import Dict, List, Optional

from interfaces.api import DEFAULT_MAX_UPLOAD_SIZE, initialize_app
from infrastructure.token_validator import TokenValidator


ENV_PREFIX = "BLOBD_"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(ENV_PREFIX + name, default)


def env_flag(name: str) -> bool:
    return (env(name, "") or "").strip().lower() in ("1", "true", "yes", "on")


def parse_tokens(token_string: str) -> Dict[str, str]:
    """Parse token string like 'abc:alice,def:bob' into a token to username map."""
    if not token_string:
        return {}
    pairs = [pair for pair in token_string.split(',') if pair.strip()]
    return TokenValidator.from_pairs(pairs).tokens


def log_level(value: str) -> str:
    """argparse type for logging level names such as INFO or debug."""
    name = value.strip().upper()
    if not isinstance(logging.getLevelName(name), int):
        raise argparse.ArgumentTypeError(f"invalid log level: {value!r}")
    # WARN -> WARNING, so uvicorn accepts the lowercased name
    return logging.getLevelName(logging.getLevelName(name))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Blob Data Service - per-user blob storage',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    parser.add_argument('port', type=int, nargs='?', default=env('PORT', '8000'),
                        help='Port to listen on (default: 8000)')
    parser.add_argument('--host', default=env('HOST', '0.0.0.0'),
                        help='Host to bind to (default: 0.0.0.0)')
    parser.add_argument('--data-dir', default=env('DATA_DIR'),
                        help='Root directory of all user homes')
    parser.add_argument('--temp-dir', default=env('TEMP_DIR'),
                        help='Scratch directory for uploads, on the same filesystem as --data-dir')
    parser.add_argument('--checksum', default=env('CHECKSUM', ''),
                        help='Server checksum algorithm: md5, sha1, sha256 or adler32 (default: disabled)')
    parser.add_argument('--verify-client-checksum', action='store_true',
                        default=env_flag('VERIFY_CLIENT_CHECKSUM'),
                        help='Reject uploads whose client checksum differs from the server checksum')
    parser.add_argument('--lenient-client-algorithm', action='store_true',
                        default=env_flag('LENIENT_CLIENT_ALGORITHM'),
                        help='Skip verification when the client checksum uses another algorithm')
    parser.add_argument('--max-upload-size', type=int,
                        default=env('MAX_UPLOAD_SIZE', str(DEFAULT_MAX_UPLOAD_SIZE)),
                        help='Maximum upload size in bytes (default: 8GiB)')
    parser.add_argument('--tokens', default=env('TOKENS'),
                        help='Comma-separated list of <token>:<username> pairs')
    parser.add_argument('--log-level', type=log_level, default=env('LOG_LEVEL', 'INFO'),
                        help='Logging level (default: INFO)')
    return parser


def main(argv: Optional[List[str]] = None):
    args = build_parser().parse_args(argv)

    logging.basicConfig(level=args.log_level, format=LOG_FORMAT)

    # Validate configuration
    if not args.data_dir or not args.temp_dir:
        print("Error: --data-dir and --temp-dir are required", file=sys.stderr)
        sys.exit(1)

    try:
        tokens = parse_tokens(args.tokens)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if not tokens:
        print("Error: --tokens must list at least one <token>:<username> pair", file=sys.stderr)
        sys.exit(1)

    # Initialize the FastAPI app
    app = initialize_app(
        data_dir=args.data_dir,
        temp_dir=args.temp_dir,
        checksum=args.checksum,
        verify_client_checksum=args.verify_client_checksum,
        max_upload_size=args.max_upload_size,
        tokens=tokens,
        lenient_client_algorithm=args.lenient_client_algorithm,
    )

    logger = logging.getLogger("blobd")
    logger.info("Starting Blob Data Service on %s:%d", args.host, args.port)
    logger.info("Data directory: %s", args.data_dir)
    logger.info("Temp directory: %s", args.temp_dir)
    logger.info("Checksum: %s (verify client: %s)", args.checksum or "disabled",
                args.verify_client_checksum)
    logger.info("Max upload size: %d bytes", args.max_upload_size)

    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower())


if __name__ == '__main__':
    main()
