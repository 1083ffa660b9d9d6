from __future__ import annotations

import argparse

from deps.services import get_emitter, get_store
from services.observability import request_id_scope
from services.reclaim import reclaim_stale_dispenses
from settings import settings


def main() -> None:
    parser = argparse.ArgumentParser(description="Fail dispensing transactions with no device activity.")
    parser.add_argument("--stale-seconds", type=int, default=settings.DISPENSE_STALE_SECONDS)
    parser.add_argument("--limit", type=int, default=100)
    args = parser.parse_args()

    with request_id_scope(prefix="reclaim") as run_id:
        result = reclaim_stale_dispenses(
            get_store(),
            get_emitter(),
            stale_after_seconds=args.stale_seconds,
            limit=args.limit,
        )

    print("run_id:", run_id)

    print("cutoff:", result["cutoff"])
    print(
        "counts:",
        f"checked={result['checked']}",
        f"reclaimed={len(result['reclaimed'])}",
        f"skipped={len(result['skipped'])}",
    )
    for tx_id in result["reclaimed"]:
        print("reclaimed:", tx_id)


if __name__ == "__main__":
    main()
