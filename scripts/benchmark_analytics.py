#!/usr/bin/env python3
"""
Benchmark Script for the cohort and segment endpoints

Runs each query several times and reports latency percentiles
"""

import os
import sys
import time
import requests
from pathlib import Path
import statistics

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))


def benchmark_queries(base_url: str, headers: dict):
    """Benchmark analytics queries"""
    print(f"\n{'=' * 60}")
    print(f"BENCHMARK: Query Performance")
    print(f"{'=' * 60}")

    queries = [
        ("Cohorts weekly (12w)", "GET", f"{base_url}/analytics/cohorts?bucket=weekly&windows=12", None),
        ("Cohorts daily (30d)", "GET", f"{base_url}/analytics/cohorts?bucket=daily&windows=30&limit=30", None),
        ("Cohorts monthly billing", "GET", f"{base_url}/analytics/cohorts?anchor=billing&bucket=monthly&windows=6", None),
        ("Segment preview (AND)", "POST", f"{base_url}/notifications/preview", {
            "filters": [
                {"field": "users.language", "op": "in", "value": ["uz", "ru"]},
                {"field": "transactions.date", "op": "within_days", "value": 14},
            ],
            "logic": "and",
        }),
        ("Segment preview (OR)", "POST", f"{base_url}/notifications/preview", {
            "filters": [
                {"field": "derived.has_active_subscription", "op": "eq", "value": True},
                {"field": "derived.has_cards", "op": "eq", "value": True},
            ],
            "logic": "or",
        }),
    ]

    results = []

    for name, method, url, body in queries:
        times = []

        # Run each query 5 times
        for _ in range(5):
            start = time.time()
            try:
                response = requests.request(method, url, json=body, headers=headers, timeout=60)
                elapsed = (time.time() - start) * 1000  # Convert to ms

                if response.status_code == 200:
                    times.append(elapsed)
                else:
                    print(f"Error in {name}: Status {response.status_code}")
            except Exception as e:
                print(f"Error in {name}: {e}")

        if times:
            results.append({
                "name": name,
                "p50": statistics.median(times),
                "p95": sorted(times)[int(len(times) * 0.95)] if len(times) > 1 else times[0],
                "avg": statistics.mean(times),
            })

    print(f"\n{'Query':<28} {'P50':>10} {'P95':>10} {'Avg':>10}")
    print(f"{'-' * 62}")
    for r in results:
        print(f"{r['name']:<28} {r['p50']:>9.0f}ms {r['p95']:>9.0f}ms {r['avg']:>9.0f}ms")

    print(f"{'=' * 60}\n")

    return results


def main():
    base_url = os.environ.get("BENCHMARK_BASE_URL", "http://localhost:8000")
    headers = {"X-API-Key": os.environ.get("API_KEY", "")}

    print("\n" + "=" * 60)
    print("FINBOT ANALYTICS API - BENCHMARK")
    print("=" * 60)
    print(f"Target: {base_url}")
    print("=" * 60)

    # Test connection
    try:
        response = requests.get(f"{base_url}/health", timeout=5)
        if response.status_code != 200:
            print("Error: API is not healthy")
            sys.exit(1)
    except Exception as e:
        print(f"Error: Cannot connect to API: {e}")
        sys.exit(1)

    benchmark_queries(base_url, headers)

    print("\n" + "=" * 60)
    print("BENCHMARK COMPLETE")
    print("=" * 60)


if __name__ == "__main__":
    main()
