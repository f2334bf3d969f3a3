import pandas as pd
from pathlib import Path
from typing import Dict, Any

TEXT_COLUMNS = ["instance_id", "cache_status", "uuid", "error"]


def load_metrics(run_id: str, filename: str = "metrics.csv") -> pd.DataFrame:
    path = Path("runs") / run_id / filename
    if not path.exists():
        raise FileNotFoundError(f"Metrics file not found for run_id={run_id}: {path}")

    df = pd.read_csv(path, dtype={c: str for c in TEXT_COLUMNS})
    df[TEXT_COLUMNS] = df[TEXT_COLUMNS].fillna("")
    df["timestamp"] = df["timestamp"].astype(float)
    df["latency_ms"] = df["latency_ms"].astype(float)
    return df


def aggregate_per_second(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    df["ts_sec"] = df["timestamp"].astype(int)

    grouped = df.groupby("ts_sec").agg(
        requests=("timestamp", "count"),
        avg_latency_ms=("latency_ms", "mean"),
        error_count=("error", lambda s: (s != "").sum()),
        instances=("instance_id", lambda s: s[s != ""].nunique()),
    )

    grouped["error_rate"] = grouped["error_count"] / grouped["requests"].clip(lower=1)
    grouped["throughput_rps"] = grouped["requests"]

    return grouped.reset_index()


def instance_distribution(df: pd.DataFrame) -> Dict[str, Dict[str, float]]:
    """Share of successful responses answered by each replica."""
    ok = df[df["instance_id"] != ""]
    if ok.empty:
        return {}
    counts = ok["instance_id"].value_counts().sort_index()
    total = int(counts.sum())
    return {
        str(instance): {"requests": int(n), "share": float(n) / total}
        for instance, n in counts.items()
    }


def duplicate_uuids(df: pd.DataFrame) -> int:
    # cache hits repeat a value on purpose
    generated = df[(df["uuid"] != "") & (~df["cache_status"].isin(["HIT", "STALE"]))]
    return int(generated["uuid"].duplicated().sum())


def compute_summary_stats(df: pd.DataFrame) -> Dict[str, Any]:
    if df.empty:
        return {
            "throughput_rps": 0.0,
            "p50_latency_ms": None,
            "p95_latency_ms": None,
            "error_rate": None,
        }

    throughput = df["throughput_rps"].mean()
    p50_latency = df["avg_latency_ms"].quantile(0.5)
    p95_latency = df["avg_latency_ms"].quantile(0.95)
    error_rate = df["error_rate"].mean()

    return {
        "throughput_rps": float(throughput),
        "p50_latency_ms": float(p50_latency),
        "p95_latency_ms": float(p95_latency),
        "error_rate": float(error_rate),
    }
