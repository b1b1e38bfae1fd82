import argparse
import sys
from typing import List, Optional

from src.config import ReplayConfig
from src.parsers import DEFAULT_NGINX_FORMAT, FILE_TYPES, iter_records, open_input
from src.replay_engine import EXIT_FATAL, run_replay


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Replay access logs against an HTTP endpoint')
    parser.add_argument('--file', default='-',
                        help="Log file to read, '-' for stdin, 'dummy' for a built-in sample line")
    parser.add_argument('--file-type', default='nginx', choices=FILE_TYPES, help='Input log type')
    parser.add_argument('--format', default=DEFAULT_NGINX_FORMAT, help='Nginx log format')
    parser.add_argument('--log', default='-', help="File to report timings to, '-' for stdout")
    parser.add_argument('--prefix', default='http://localhost', help='URL prefix to query')
    parser.add_argument('--ratio', type=float, default=1,
                        help='Replay speed ratio, higher means faster replay (>= 1)')
    parser.add_argument('--debug', action='store_true', help='Print extra debugging information')
    parser.add_argument('--timeout', type=int, default=60000,
                        help='Request timeout in milliseconds, 0 means no timeout')
    parser.add_argument('--skip-sleep', action='store_true',
                        help='Skip sleep between requests based on log timestamps')
    parser.add_argument('--enable-window', action='store_true',
                        help='Stop replaying when the error rate over the rolling window is too high')
    parser.add_argument('--window-size', type=int, default=1000,
                        help='Number of recent requests tracked by the rolling window')
    parser.add_argument('--error-rate', type=float, default=40,
                        help='Error percentage that stops the replay (between 0 and 100)')
    parser.add_argument('--count-build-errors', action='store_true',
                        help='Count requests that could not be built as failures in the rolling window')
    parser.add_argument('--max-in-flight', type=int, default=0,
                        help='Maximum concurrent requests, 0 means unlimited')
    parser.add_argument('--ssl-skip-verify', action='store_true',
                        help='Do not verify TLS certificates')
    parser.add_argument('--user-name', default='', help='Basic auth username')
    parser.add_argument('--password', default='', help='Basic auth password')
    parser.add_argument('--metrics', help='Output metrics CSV (optional)')
    parser.add_argument('--metrics-interval', type=float, default=5,
                        help='Metrics collection interval in seconds')
    return parser


def config_from_args(args: argparse.Namespace) -> ReplayConfig:
    return ReplayConfig(
        input_file=args.file,
        file_type=args.file_type,
        log_format=args.format,
        log_file=args.log,
        prefix=args.prefix,
        ratio=args.ratio,
        debug=args.debug,
        timeout_ms=args.timeout,
        skip_sleep=args.skip_sleep,
        enable_window=args.enable_window,
        window_size=args.window_size,
        error_rate=args.error_rate,
        ssl_skip_verify=args.ssl_skip_verify,
        basic_auth_user=args.user_name,
        basic_auth_password=args.password,
        max_in_flight=args.max_in_flight,
        count_build_errors=args.count_build_errors,
        metrics_file=args.metrics,
        metrics_interval=args.metrics_interval,
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    config = config_from_args(args)

    try:
        config.validate()
    except ValueError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return EXIT_FATAL

    if config.debug:
        print(f"[*] Parsing {config.input_file} log file", file=sys.stderr)
        print(f"[*] Using log type {config.file_type}", file=sys.stderr, flush=True)

    try:
        stream = open_input(config.input_file, config.file_type)
    except OSError as e:
        print(f"[ERROR] Cannot open input {config.input_file}: {e}", file=sys.stderr)
        return EXIT_FATAL

    try:
        records = iter_records(stream, config.file_type, config.log_format)
        return run_replay(records, config)
    except OSError as e:
        print(f"[ERROR] Cannot open result log {config.log_file}: {e}", file=sys.stderr)
        return EXIT_FATAL
    finally:
        if stream is not sys.stdin:
            stream.close()


if __name__ == '__main__':
    sys.exit(main())
