# scripts/reclaim_daemon.py
from __future__ import annotations

import logging
import time

from deps.services import get_emitter, get_store
from services.observability import request_id_scope
from services.reclaim import reclaim_stale_dispenses
from settings import settings


logger = logging.getLogger("reclaim_daemon")


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    interval = max(1, settings.RECLAIM_INTERVAL_SECONDS)
    stale_after = max(1, settings.DISPENSE_STALE_SECONDS)
    logger.info("Reclaim daemon starting; interval=%ss stale_after=%ss", interval, stale_after)

    store = get_store()
    emitter = get_emitter()
    while True:
        try:
            with request_id_scope(prefix="reclaim"):
                result = reclaim_stale_dispenses(store, emitter, stale_after_seconds=stale_after)
        except KeyboardInterrupt:
            logger.info("Reclaim daemon exiting")
            raise
        except Exception:
            logger.exception("Reclaim daemon failed")
            raise

        logger.info(
            "Reclaim pass | checked=%s reclaimed=%s skipped=%s",
            result["checked"],
            len(result["reclaimed"]),
            len(result["skipped"]),
        )
        time.sleep(interval)


if __name__ == "__main__":
    main()
