import argparse
import csv
import glob
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns


sns.set_style("whitegrid")
sns.set_palette("husl")

RESULT_COLUMNS = ['status_code', 'start_unix_seconds', 'duration_nanos', 'path', 'payload', 'error']


def _label(path: str, prefix: str) -> str:
    return Path(path).stem.replace(prefix, '').replace('_', ' ')


def load_result_log(log_file: str) -> pd.DataFrame:
    """Load a tab-separated replay result log into a DataFrame."""
    df = pd.read_csv(
        log_file, sep='\t', header=None, names=RESULT_COLUMNS,
        quoting=csv.QUOTE_NONE, dtype={'path': str, 'payload': str, 'error': str},
        keep_default_na=False
    )
    df['error'] = df['error'].fillna('')
    df['latency_ms'] = df['duration_nanos'] / 1e6
    df['runtime_sec'] = df['start_unix_seconds'] - df['start_unix_seconds'].min()
    return df


def plot_throughput(metrics_files: list, output_dir: str):
    """Plot throughput over time for all experiments."""
    plt.figure(figsize=(14, 6))

    for metrics_file in metrics_files:
        df = pd.read_csv(metrics_file)
        plt.plot(df['runtime_sec'], df['throughput_rps'], label=_label(metrics_file, 'metrics_'),
                 marker='o', alpha=0.7)

    plt.xlabel('Runtime (seconds)', fontsize=12)
    plt.ylabel('Throughput (requests/sec)', fontsize=12)
    plt.title('Throughput Over Time', fontsize=14, fontweight='bold')
    plt.legend(bbox_to_anchor=(1.05, 1), loc='upper left')
    plt.grid(True, alpha=0.3)
    plt.tight_layout()
    plt.savefig(f"{output_dir}/throughput.png", dpi=300, bbox_inches='tight')
    print(f"[OK] Saved: {output_dir}/throughput.png")
    plt.close()


def plot_in_flight(metrics_files: list, output_dir: str):
    """Plot concurrent requests and cumulative failures."""
    fig, axes = plt.subplots(1, 2, figsize=(16, 5))

    for metrics_file in metrics_files:
        df = pd.read_csv(metrics_file)
        label = _label(metrics_file, 'metrics_')
        axes[0].plot(df['runtime_sec'], df['in_flight'], label=label, marker='o', alpha=0.7)
        axes[1].plot(df['runtime_sec'], df['failed'], label=label, marker='o', alpha=0.7)

    axes[0].set_xlabel('Runtime (seconds)', fontsize=11)
    axes[0].set_ylabel('Requests', fontsize=11)
    axes[0].set_title('In-flight Requests', fontsize=12, fontweight='bold')
    axes[0].legend()
    axes[0].grid(True, alpha=0.3)

    axes[1].set_xlabel('Runtime (seconds)', fontsize=11)
    axes[1].set_ylabel('Requests', fontsize=11)
    axes[1].set_title('Cumulative Failures', fontsize=12, fontweight='bold')
    axes[1].legend()
    axes[1].grid(True, alpha=0.3)

    plt.tight_layout()
    plt.savefig(f"{output_dir}/in_flight.png", dpi=300)
    print(f"[OK] Saved: {output_dir}/in_flight.png")
    plt.close()


def plot_resource_usage(metrics_files: list, output_dir: str):
    """Plot CPU and memory usage."""
    fig, axes = plt.subplots(1, 2, figsize=(16, 5))

    for metrics_file in metrics_files:
        df = pd.read_csv(metrics_file)
        label = _label(metrics_file, 'metrics_')
        axes[0].plot(df['runtime_sec'], df['cpu_percent'], label=label, marker='o', alpha=0.7)
        axes[1].plot(df['runtime_sec'], df['memory_mb'], label=label, marker='o', alpha=0.7)

    axes[0].set_xlabel('Runtime (seconds)', fontsize=11)
    axes[0].set_ylabel('CPU %', fontsize=11)
    axes[0].set_title('CPU Utilization', fontsize=12, fontweight='bold')
    axes[0].legend()
    axes[0].grid(True, alpha=0.3)

    axes[1].set_xlabel('Runtime (seconds)', fontsize=11)
    axes[1].set_ylabel('Memory (MB)', fontsize=11)
    axes[1].set_title('Memory Usage', fontsize=12, fontweight='bold')
    axes[1].legend()
    axes[1].grid(True, alpha=0.3)

    plt.tight_layout()
    plt.savefig(f"{output_dir}/resource_usage.png", dpi=300)
    print(f"[OK] Saved: {output_dir}/resource_usage.png")
    plt.close()


def plot_latency_over_time(log_files: list, output_dir: str):
    """Plot per-second median and p95 latency."""
    plt.figure(figsize=(14, 6))

    for log_file in log_files:
        df = load_result_log(log_file)
        per_second = df[df['duration_nanos'] > 0].groupby('runtime_sec')['latency_ms']
        label = _label(log_file, 'results_')
        plt.plot(per_second.median().index, per_second.median().values,
                 label=f'{label} median', alpha=0.8)
        plt.plot(per_second.quantile(0.95).index, per_second.quantile(0.95).values,
                 label=f'{label} p95', linestyle='--', alpha=0.8)

    plt.xlabel('Runtime (seconds)', fontsize=12)
    plt.ylabel('Latency (ms)', fontsize=12)
    plt.title('Latency Over Time', fontsize=14, fontweight='bold')
    plt.legend(bbox_to_anchor=(1.05, 1), loc='upper left')
    plt.grid(True, alpha=0.3)
    plt.tight_layout()
    plt.savefig(f"{output_dir}/latency_over_time.png", dpi=300, bbox_inches='tight')
    print(f"[OK] Saved: {output_dir}/latency_over_time.png")
    plt.close()


def plot_latency_by_status(log_files: list, output_dir: str):
    """Plot latency distributions split by status code."""
    frames = []
    for log_file in log_files:
        df = load_result_log(log_file)
        df['experiment'] = _label(log_file, 'results_')
        frames.append(df[df['duration_nanos'] > 0])

    df = pd.concat(frames, ignore_index=True)
    if df.empty:
        print("[WARNING] No completed requests to plot")
        return

    df['status'] = df['status_code'].astype(str)

    plt.figure(figsize=(14, 6))
    sns.boxplot(data=df, x='status', y='latency_ms', hue='experiment')
    plt.yscale('log')
    plt.xlabel('Status Code', fontsize=12)
    plt.ylabel('Latency (ms, log scale)', fontsize=12)
    plt.title('Latency by Status Code', fontsize=14, fontweight='bold')
    plt.tight_layout()
    plt.savefig(f"{output_dir}/latency_by_status.png", dpi=300)
    print(f"[OK] Saved: {output_dir}/latency_by_status.png")
    plt.close()


def generate_summary_report(log_files: list, output_dir: str):
    """Generate a summary report comparing all experiments."""
    summary_data = []

    for log_file in log_files:
        df = load_result_log(log_file)
        completed = df[df['duration_nanos'] > 0]['latency_ms']
        runtime = max(int(df['runtime_sec'].max()), 1) if len(df) else 1

        summary_data.append({
            'Experiment': _label(log_file, 'results_'),
            'Requests': len(df),
            'Errors': int((df['error'] != '').sum()),
            'Throughput (rps)': f"{len(df) / runtime:.1f}",
            'P50 (ms)': f"{np.percentile(completed, 50):.1f}" if len(completed) else '-',
            'P99 (ms)': f"{np.percentile(completed, 99):.1f}" if len(completed) else '-',
        })

    summary_df = pd.DataFrame(summary_data)
    summary_df.to_csv(f"{output_dir}/summary_report.csv", index=False)

    with open(f"{output_dir}/summary_report.txt", 'w') as f:
        f.write("=" * 80 + "\n")
        f.write("LOG REPLAY SUMMARY\n")
        f.write("=" * 80 + "\n\n")
        f.write(summary_df.to_string(index=False))
        f.write("\n\n" + "=" * 80 + "\n")

    print(f"[OK] Saved: {output_dir}/summary_report.csv")
    print(f"[OK] Saved: {output_dir}/summary_report.txt")

    print("\n" + "=" * 80)
    print("REPLAY SUMMARY")
    print("=" * 80)
    print(summary_df.to_string(index=False))
    print("=" * 80 + "\n")


def main():
    parser = argparse.ArgumentParser(description='Generate replay analysis plots')
    parser.add_argument('--results-dir', default='results',
                        help='Directory with results_*.tsv and metrics_*.csv files')
    parser.add_argument('--output-dir', default='results/plots',
                        help='Output directory for plots')

    args = parser.parse_args()

    Path(args.output_dir).mkdir(parents=True, exist_ok=True)

    log_files = sorted(glob.glob(f"{args.results_dir}/results_*.tsv"))
    metrics_files = sorted(glob.glob(f"{args.results_dir}/metrics_*.csv"))

    if not log_files and not metrics_files:
        print(f"[ERROR] No result logs or metrics files found in {args.results_dir}")
        return

    print(f"\n{'=' * 80}")
    print("LOG REPLAY VISUALIZATION")
    print(f"{'=' * 80}")
    print(f"[*] Found {len(log_files)} result log(s), {len(metrics_files)} metrics file(s)")
    print(f"[*] Output directory: {args.output_dir}")
    print(f"{'=' * 80}\n")

    print("Generating plots...")
    if metrics_files:
        plot_throughput(metrics_files, args.output_dir)
        plot_in_flight(metrics_files, args.output_dir)
        plot_resource_usage(metrics_files, args.output_dir)
    if log_files:
        plot_latency_over_time(log_files, args.output_dir)
        plot_latency_by_status(log_files, args.output_dir)

        print("\nGenerating summary report...")
        generate_summary_report(log_files, args.output_dir)

    print(f"\n{'=' * 80}")
    print(f"[OK] All visualizations saved to: {args.output_dir}")
    print(f"{'=' * 80}\n")


if __name__ == '__main__':
    main()
