from __future__ import annotations

import argparse
import json
import re
from pathlib import Path
from typing import Any


ENTRY_RE = re.compile(r"^\[(?P<ts>[^\]]+)\]\s+stage=(?P<stage>\S+)\s+meta=(?P<meta>\{.*\})$")
STAGE_PREFIXES: tuple[str, ...] = ("facts", "audit")


def _percentile(values: list[float], p: float) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    rank = (p / 100.0) * (len(ordered) - 1)
    lo = int(rank)
    hi = min(lo + 1, len(ordered) - 1)
    if lo == hi:
        return ordered[lo]
    w = rank - lo
    return ordered[lo] * (1.0 - w) + ordered[hi] * w


def _format_latency(values: list[float]) -> str:
    if not values:
        return "n/a"
    avg = sum(values) / len(values)
    p50 = _percentile(values, 50)
    p95 = _percentile(values, 95)
    return f"avg={avg:.2f}ms p50={p50:.2f}ms p95={p95:.2f}ms n={len(values)}"


def _format_rate(n: int, d: int) -> str:
    if d <= 0:
        return "n/a"
    return f"{(100.0 * n / d):.1f}% ({n}/{d})"


def parse_log_lines(lines: list[str]) -> dict[str, Any]:
    stats: dict[str, Any] = {
        prefix: {"latencies": [], "invalid_json": 0, "inference_errors": 0} for prefix in STAGE_PREFIXES
    }
    for line in lines:
        match = ENTRY_RE.match(line.strip())
        if not match:
            continue
        prefix, _, suffix = match.group("stage").partition("_")
        bucket = stats.get(prefix)
        if bucket is None:
            continue
        try:
            meta = json.loads(match.group("meta"))
        except ValueError:
            meta = {}

        if suffix == "inference_end":
            elapsed = float(meta.get("elapsed_ms", 0.0) or 0.0)
            if elapsed > 0:
                bucket["latencies"].append(elapsed)
        elif suffix == "parse_error_invalid_json":
            bucket["invalid_json"] += 1
        elif suffix == "inference_error":
            bucket["inference_errors"] += 1

    for bucket in stats.values():
        calls = len(bucket["latencies"])
        bucket["calls"] = calls
        bucket["json_valid_calls"] = max(0, calls - bucket["invalid_json"])
    return stats


def parse_log(path: Path) -> dict[str, Any]:
    return parse_log_lines(path.read_text(encoding="utf-8", errors="ignore").splitlines())


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Summarize medops LLM debug timings from medops_llm_raw.log"
    )
    parser.add_argument(
        "--log-path",
        default="/tmp/medops_llm_raw.log",
        help="Path to LLM raw debug log (default: /tmp/medops_llm_raw.log)",
    )
    parser.add_argument(
        "--list-latencies",
        action="store_true",
        help="Print each facts/audit latency entry in addition to summary.",
    )
    args = parser.parse_args()

    path = Path(args.log_path).expanduser()
    if not path.exists():
        raise SystemExit(f"log file not found: {path}")

    stats = parse_log(path)

    print(f"log_path: {path}")
    for prefix in STAGE_PREFIXES:
        bucket = stats[prefix]
        print(f"{prefix}_latency: {_format_latency(bucket['latencies'])}")
        print(f"{prefix}_json_valid_rate: " + _format_rate(bucket["json_valid_calls"], bucket["calls"]))
        print(f"{prefix}_invalid_json_count: {bucket['invalid_json']}")
        print(f"{prefix}_inference_error_count: {bucket['inference_errors']}")
        if args.list_latencies:
            print(
                f"{prefix}_latency_values_ms:",
                ", ".join(f"{v:.2f}" for v in bucket["latencies"]) or "n/a",
            )


if __name__ == "__main__":
    main()
