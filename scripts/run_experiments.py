import argparse
import json
import subprocess
import sys
from datetime import datetime
from pathlib import Path


def run_experiment(input_file: str, file_type: str, prefix: str, ratio: float,
                   extra_args: list, output_dir: str, timeout: int) -> dict:
    """
    Replay the input once at the given ratio.

    Returns:
        Dictionary with experiment results
    """
    exp_id = f"r{ratio:g}"
    log_file = f"{output_dir}/results_{exp_id}.tsv"
    metrics_file = f"{output_dir}/metrics_{exp_id}.csv"

    print(f"\n{'=' * 60}")
    print(f"[TEST] Experiment: {exp_id}")
    print(f"   Ratio: {ratio:g}, Prefix: {prefix}")
    print(f"{'=' * 60}")

    cmd = [
        sys.executable, '-m', 'src.log_replay',
        '--file', input_file,
        '--file-type', file_type,
        '--prefix', prefix,
        '--ratio', str(ratio),
        '--log', log_file,
        '--metrics', metrics_file,
        '--metrics-interval', '1',
    ] + extra_args

    start = datetime.now()
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        exit_code = result.returncode
    except subprocess.TimeoutExpired:
        exit_code = None

    end = datetime.now()

    return {
        'exp_id': exp_id,
        'ratio': ratio,
        'exit_code': exit_code,
        'success': exit_code == 0,
        'aborted': exit_code == 1,
        'start_time': start.isoformat(),
        'end_time': end.isoformat(),
        'log_file': log_file,
        'metrics_file': metrics_file
    }


def main():
    parser = argparse.ArgumentParser(description='Replay a log at several speed ratios')
    parser.add_argument('--input', required=True, help='Input log file')
    parser.add_argument('--file-type', default='nginx', help='Input log type')
    parser.add_argument('--prefix', required=True, help='URL prefix to query')
    parser.add_argument('--ratios', nargs='+', type=float, default=[1, 2, 5, 10],
                        help='Speed ratios to test')
    parser.add_argument('--timeout', type=int, default=3600,
                        help='Maximum seconds per experiment')
    parser.add_argument('--output-dir', default='results', help='Output directory')
    parser.add_argument('replay_args', nargs=argparse.REMAINDER,
                        help='Extra options passed to log_replay after --')

    args = parser.parse_args()
    extra_args = [a for a in args.replay_args if a != '--']

    Path(args.output_dir).mkdir(parents=True, exist_ok=True)

    print(f"\n[*] Running {len(args.ratios)} experiments...")
    print(f"   Ratios: {args.ratios}")

    results = []

    for i, ratio in enumerate(args.ratios, 1):
        print(f"\n[{i}/{len(args.ratios)}] ", end='')

        result = run_experiment(
            args.input, args.file_type, args.prefix, ratio,
            extra_args, args.output_dir, args.timeout
        )

        results.append(result)

    summary_file = f"{args.output_dir}/experiments_summary.json"
    with open(summary_file, 'w') as f:
        json.dump(results, f, indent=2)

    print(f"\n{'=' * 60}")
    print("[OK] All experiments complete!")
    print(f"[*] Summary saved to: {summary_file}")
    print(f"{'=' * 60}")

    successful = sum(1 for r in results if r['success'])
    print(f"\nSuccess rate: {successful}/{len(results)} experiments")


if __name__ == '__main__':
    main()
