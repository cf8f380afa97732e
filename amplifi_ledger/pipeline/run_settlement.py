from __future__ import annotations

import logging
import sys
from pathlib import Path

from amplifi_ledger.analytics.settlement import settle_ready_epochs
from amplifi_ledger.config import load_config
from amplifi_ledger.service import open_ledger
from amplifi_ledger.utils.time import now_unix, parse_timestamp

logger = logging.getLogger(__name__)


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    root = Path(__file__).resolve().parents[2]
    config = load_config(root / "config.yaml")

    conn = open_ledger(config)
    if conn is None:
        logger.error("No database configured; nothing to settle")
        raise SystemExit(1)

    as_of = parse_timestamp(sys.argv[1]) if len(sys.argv) > 1 else None
    now = as_of if as_of is not None else now_unix()

    try:
        results = settle_ready_epochs(conn, now=now, max_earners=config.settlement.max_earners_per_epoch)
    finally:
        conn.close()

    distributed = sum(result["total_distributed_lamports"] for result in results)
    logger.info("Settlement summary epochs_settled=%d distributed_lamports=%d", len(results), distributed)


if __name__ == "__main__":
    main()
