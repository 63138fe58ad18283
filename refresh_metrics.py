import logging
import sys

import config
import dash_wrappers as dw
from exceptions import CSVParseError, StoreError

logger = logging.getLogger(__name__)

USAGE = "usage: python refresh_metrics.py <portfolio_values.csv> [updated_by]"


def main(argv=None):
    """
    Recalculate and store metrics from a CSV export on disk.

    Runs the same pipeline as the admin upload page, so a scheduled job can
    refresh the stored rows without the dashboard.
    """
    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        print(USAGE)
        return 2

    path = argv[0]
    updated_by = argv[1] if len(argv) > 1 else config.ADMIN_USERNAME

    try:
        data = dw.ingest_file(path, updated_by)
    except (OSError, CSVParseError, StoreError) as e:
        logger.error("Refresh from %s failed: %s", path, e)
        return 1

    summary = data["upload"]
    for warning in summary["warnings"]:
        logger.warning(warning)
    logger.info(
        "Refreshed %d portfolios as of %s (benchmark %s)",
        summary["portfolioCount"],
        summary["asOfDate"],
        "available" if summary["benchmarkAvailable"] else "unavailable",
    )
    return 0


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    sys.exit(main())
