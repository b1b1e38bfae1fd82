import argparse
import json
import sys
from collections import Counter
from pathlib import Path

import numpy as np

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from src.records import ResultRecord


def load_results(log_path: str) -> list:
    """Read every ResultRecord from a replay result log."""
    results = []
    with open(log_path, 'r', encoding='utf-8', newline='') as f:
        for line in f:
            if line.strip():
                results.append(ResultRecord.from_line(line))
    return results


def compute_latencies(log_path: str, output_file: str = None) -> dict:
    """
    Compute latency statistics from a replay result log.

    Requests that failed before reaching the network (duration 0) are
    excluded from the latency figures but counted as errors.

    Args:
        log_path: Path to the tab-separated result log
        output_file: Optional output JSON file
    """
    print(f"[*] Computing latencies from: {log_path}")

    results = load_results(log_path)
    if not results:
        print("[WARNING] No results found")
        return {}

    latencies = [r.duration_nanos / 1e6 for r in results if r.duration_nanos > 0]
    statuses = Counter(r.status_code for r in results)

    stats = {
        'requests': len(results),
        'errors': sum(1 for r in results if r.failed),
        'status_codes': {str(code): count for code, count in sorted(statuses.items())},
    }

    if latencies:
        stats.update({
            'count': len(latencies),
            'mean': float(np.mean(latencies)),
            'median': float(np.median(latencies)),
            'std': float(np.std(latencies)),
            'min': float(np.min(latencies)),
            'max': float(np.max(latencies)),
            'p50': float(np.percentile(latencies, 50)),
            'p90': float(np.percentile(latencies, 90)),
            'p95': float(np.percentile(latencies, 95)),
            'p99': float(np.percentile(latencies, 99)),
        })

        print("\nLatency Statistics (ms):")
        print(f"  Count: {stats['count']:,}")
        print(f"  Mean:  {stats['mean']:.2f}")
        print(f"  Median: {stats['median']:.2f}")
        print(f"  Std:   {stats['std']:.2f}")
        print(f"  Min:   {stats['min']:.2f}")
        print(f"  Max:   {stats['max']:.2f}")
        print(f"  P50:   {stats['p50']:.2f}")
        print(f"  P90:   {stats['p90']:.2f}")
        print(f"  P95:   {stats['p95']:.2f}")
        print(f"  P99:   {stats['p99']:.2f}")

    print("\nStatus codes:")
    for code, count in stats['status_codes'].items():
        print(f"  {code}: {count:,}")
    print(f"  Errors: {stats['errors']:,}")

    if output_file:
        with open(output_file, 'w') as f:
            json.dump(stats, f, indent=2)
        print(f"\n[OK] Saved to: {output_file}")

    return stats


def main():
    parser = argparse.ArgumentParser(description='Compute latency statistics from a replay log')
    parser.add_argument('--log', required=True, help='Result log file')
    parser.add_argument('--output', help='Output JSON file (optional)')

    args = parser.parse_args()

    compute_latencies(args.log, args.output)


if __name__ == '__main__':
    main()
