"""Lead enrichment command line entry point.

Commands:
  enrich <lead_id> [--force] [--sources property social]
  batch <lead_id> <lead_id> ... [--force]
  refresh                 run one periodic refresh pass
  schedule                run periodic refresh every REFRESH_CHECK_INTERVAL_MIN via APScheduler
  serve                   run the HTTP API with uvicorn

CLI: python -m leadenrich.main enrich 42
"""

import argparse
import asyncio
import json
import logging

from apscheduler.schedulers.blocking import BlockingScheduler

from leadenrich.config import settings
from leadenrich.enrich.service import build_sql_service as build_service
from leadenrich.enrich.triggers import EnrichmentTriggers
from leadenrich.errors import EnrichmentError
from leadenrich.logging_utils import configure_logging, log_event

logger = logging.getLogger("leadenrich.main")


def run_refresh(batch_size: int = 50) -> int:
    """Enrich consenting leads whose data is older than the refresh interval."""
    triggers = EnrichmentTriggers(build_service())
    processed = asyncio.run(triggers.process_periodic_refresh(batch_size=batch_size))
    log_event(logger, "refresh.completed", processed=processed)
    return processed


def _print(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Lead enrichment pipeline")
    sub = parser.add_subparsers(dest="command", required=True)

    p_enrich = sub.add_parser("enrich", help="Enrich a single lead")
    p_enrich.add_argument("lead_id", type=int)
    p_enrich.add_argument("--force", action="store_true", help="Bypass the enrichment cache")
    p_enrich.add_argument("--sources", nargs="+", choices=["property", "social", "credit"])

    p_batch = sub.add_parser("batch", help="Enrich several leads sequentially")
    p_batch.add_argument("lead_ids", type=int, nargs="+")
    p_batch.add_argument("--force", action="store_true")

    p_refresh = sub.add_parser("refresh", help="Run one periodic refresh pass")
    p_refresh.add_argument("--batch-size", type=int, default=50)

    sub.add_parser("schedule", help="Run periodic refresh on an interval")

    p_serve = sub.add_parser("serve", help="Run the HTTP API")
    p_serve.add_argument("--host", default="0.0.0.0")
    p_serve.add_argument("--port", type=int, default=8470)

    args = parser.parse_args(argv)
    configure_logging()

    if args.command == "serve":
        import uvicorn

        uvicorn.run("leadenrich.web.app:app", host=args.host, port=args.port)
        return 0

    if args.command == "schedule":
        logger.info("scheduler.starting", extra={"interval_min": settings.REFRESH_CHECK_INTERVAL_MIN})
        scheduler = BlockingScheduler()
        scheduler.add_job(run_refresh, "interval", minutes=settings.REFRESH_CHECK_INTERVAL_MIN)
        try:
            scheduler.start()
        except (KeyboardInterrupt, SystemExit):
            logger.info("scheduler.stopped")
        return 0

    if args.command == "refresh":
        _print({"processed": run_refresh(args.batch_size)})
        return 0

    service = build_service()
    try:
        if args.command == "enrich":
            result = asyncio.run(service.enrich_lead(args.lead_id, force_refresh=args.force, sources=args.sources))
            _print(result.to_dict())
        else:
            _print(asyncio.run(service.enrich_leads_batch(args.lead_ids, force_refresh=args.force)))
    except EnrichmentError as exc:
        logger.error("cli.failed", extra={"command": args.command, "error": str(exc)})
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
