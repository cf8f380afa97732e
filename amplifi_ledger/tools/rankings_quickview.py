from __future__ import annotations

import sys
from pathlib import Path

from amplifi_ledger.config import load_config
from amplifi_ledger.scoring.features import lamports_to_sol
from amplifi_ledger.service import open_ledger, rankings
from amplifi_ledger.utils.time import parse_timestamp


def main() -> None:
    root = Path(__file__).resolve().parents[2]
    config = load_config(root / "config.yaml")
    period = sys.argv[1] if len(sys.argv) > 1 else "all"
    as_of = parse_timestamp(sys.argv[2]) if len(sys.argv) > 2 else None

    conn = open_ledger(config)
    if conn is None:
        print("No database configured.")
        return
    try:
        result = rankings(conn, period, 20, config, now=as_of)
    finally:
        conn.close()

    print(f"period: {result['period']}")
    for entry in result["entries"]:
        label = entry["symbol"] or entry["tokenMint"]
        print(
            f"{entry['rank']:>3}. {label} exposure={entry['exposureScore']:.2f} "
            f"engagers={entry['uniqueEngagers']} "
            f"earned_sol={lamports_to_sol(int(entry['totalEarnedLamports'])):.4f} "
            f"trend={entry['trendPct']:+.1f}%"
        )


if __name__ == "__main__":
    main()
