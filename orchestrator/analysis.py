import argparse
import json
from typing import Dict, Any, List
import pandas as pd
from .config import load_config
from .metrics import (
    load_metrics,
    aggregate_per_second,
    compute_summary_stats,
    instance_distribution,
    duplicate_uuids,
)


def anomaly_windows(flags: pd.Series) -> List[Dict[str, int]]:
    """
    Collapse a boolean series indexed by relative second into
    contiguous [start_sec, end_sec] windows.
    """
    windows: List[Dict[str, int]] = []
    current_start = None
    prev_t = None

    for t in sorted(int(s) for s in flags[flags].index):
        if current_start is None:
            current_start = prev_t = t
        elif t == prev_t + 1:
            prev_t = t
        else:
            windows.append({"start_sec": current_start, "end_sec": prev_t})
            current_start = prev_t = t

    if current_start is not None:
        windows.append({"start_sec": current_start, "end_sec": prev_t})
    return windows


def detect_anomalies(
    base_summary: Dict[str, Any],
    run_agg: pd.DataFrame,
    thresholds: Dict[str, Any] | None = None,
) -> Dict[str, Any]:
    """
    Detect anomaly windows and approximate recovery time.

    A second is anomalous when seen through the front door:
      * throughput_rps < baseline_throughput * (1 - throughput_drop_threshold), OR
      * error_rate > error_rate_threshold (gateway errors, forced 500s), OR
      * fewer replicas answered than min_instances (a replica was ejected)

    Thresholds come from the anomaly_detection section of config.yaml
    unless passed in.
    """
    if thresholds is None:
        thresholds = load_config().get("anomaly_detection", {})

    throughput_drop_threshold = thresholds.get("throughput_drop_threshold", 0.5)
    error_rate_threshold = thresholds.get("error_rate_threshold", 0.1)
    warmup_ignore_sec = thresholds.get("warmup_ignore_sec", 2)
    min_instances = thresholds.get("min_instances", 0)

    baseline_tp = base_summary.get("throughput_rps") or 0.0
    if baseline_tp <= 0 or run_agg.empty:
        return {"anomaly_windows": [], "recovery_time_sec": None}

    run_agg = run_agg.copy()
    run_agg["rel_sec"] = run_agg["ts_sec"] - run_agg["ts_sec"].min()
    run_agg = run_agg[run_agg["rel_sec"] >= warmup_ignore_sec]
    if run_agg.empty:
        return {"anomaly_windows": [], "recovery_time_sec": None}

    tp_threshold = baseline_tp * (1.0 - throughput_drop_threshold)
    flags = (
        (run_agg["throughput_rps"] < tp_threshold)
        | (run_agg["error_rate"] > error_rate_threshold)
        | (run_agg["instances"] < min_instances)
    )
    flags.index = run_agg["rel_sec"]

    windows = anomaly_windows(flags)
    if not windows:
        return {"anomaly_windows": [], "recovery_time_sec": None}

    # recovery time: first anomalous second to last anomalous second
    recovery_time_sec = windows[-1]["end_sec"] - windows[0]["start_sec"]

    return {
        "anomaly_windows": windows,
        "recovery_time_sec": float(recovery_time_sec),
    }


def summarize_run(run_id: str) -> Dict[str, Any]:
    df = load_metrics(run_id)
    agg = aggregate_per_second(df)
    return {
        "run_id": run_id,
        "summary": compute_summary_stats(agg),
        "instances": instance_distribution(df),
        "duplicate_uuids": duplicate_uuids(df),
    }


def compare_run_to_baseline(baseline_id: str, run_id: str) -> Dict[str, Any]:
    base_df = load_metrics(baseline_id)
    run_df = load_metrics(run_id)

    base_agg = aggregate_per_second(base_df)
    run_agg = aggregate_per_second(run_df)

    base_summary = compute_summary_stats(base_agg)
    run_summary = compute_summary_stats(run_agg)

    base_tp = base_summary["throughput_rps"] or 0.0
    run_tp = run_summary["throughput_rps"] or 0.0

    throughput_drop_pct = 0.0
    if base_tp > 0:
        throughput_drop_pct = (base_tp - run_tp) / base_tp * 100.0

    anomaly_info = detect_anomalies(base_summary, run_agg)

    return {
        "baseline_id": baseline_id,
        "run_id": run_id,
        "baseline_summary": base_summary,
        "run_summary": run_summary,
        "baseline_instances": instance_distribution(base_df),
        "run_instances": instance_distribution(run_df),
        "duplicate_uuids": duplicate_uuids(run_df),
        "throughput_drop_pct": throughput_drop_pct,
        "anomaly_windows": anomaly_info["anomaly_windows"],
        "recovery_time_sec": anomaly_info["recovery_time_sec"],
    }


def main():
    parser = argparse.ArgumentParser(description="Summarize a run, or compare it to a baseline.")
    parser.add_argument("--run-id", required=True)
    parser.add_argument("--baseline-id", required=False)
    args = parser.parse_args()

    if args.baseline_id:
        result = compare_run_to_baseline(args.baseline_id, args.run_id)
    else:
        result = summarize_run(args.run_id)
    print(json.dumps(result, indent=2))


if __name__ == "__main__":
    main()
