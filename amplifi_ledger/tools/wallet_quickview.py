from __future__ import annotations

import sys
from pathlib import Path

from amplifi_ledger.config import load_config
from amplifi_ledger.errors import InvalidRequestError
from amplifi_ledger.scoring.features import lamports_to_sol
from amplifi_ledger.service import claimable_summary, holder_stats, open_ledger


def main() -> None:
    root = Path(__file__).resolve().parents[2]
    config = load_config(root / "config.yaml")
    if len(sys.argv) < 2:
        print("usage: wallet_quickview.py <wallet>")
        return

    conn = open_ledger(config)
    if conn is None:
        print("No database configured.")
        return
    try:
        summary = claimable_summary(conn, sys.argv[1], config)
        stats = holder_stats(conn, sys.argv[1])
    except InvalidRequestError as exc:
        print(f"error: {exc}")
        return
    finally:
        conn.close()

    claim = summary["pumpfun"]
    print(f"wallet: {summary['wallet']}")
    print(f"available_sol: {_sol(claim['availableLamports'])} ({claim['availableRewardCount']} rewards)")
    print(f"pending_sol: {_sol(claim['pendingLamports'])} ({claim['pendingRewardCount']} rewards)")
    print(f"threshold_met: {claim['thresholdMet']} (threshold_sol={_sol(claim['thresholdLamports'])})")
    print(f"epochs: {', '.join(claim['availableEpochIds']) or 'n/a'}")
    print(
        f"lifetime earned={_sol(stats['totalEarned'])} claimed={_sol(stats['totalClaimed'])} "
        f"pending={_sol(stats['totalPending'])} campaigns={stats['campaignsJoined']} "
        f"engagements={stats['totalEngagements']}"
    )


def _sol(lamports: str) -> str:
    return f"{lamports_to_sol(int(lamports)):.4f}"


if __name__ == "__main__":
    main()
