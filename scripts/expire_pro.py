#!/usr/bin/env python3
"""
Expire lapsed Pro trials and subscriptions. Manual comps are never touched.

Schedule hourly or daily, e.g. from cron inside the backend container:
    docker exec backend python -m scripts.expire_pro

Exits non-zero if any record failed so the scheduler reports and retries.
"""

import logging
import sys
from pathlib import Path

# Add the app to the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.services.pro_status import expire_orphan_pro

logger = logging.getLogger("expire_pro")


def main() -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    result = expire_orphan_pro()
    logger.info(f"Downgraded {len(result.downgraded)} record(s)")
    if not result.ok:
        logger.error(f"Failed to downgrade {len(result.failed)} record(s): {', '.join(result.failed)}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
