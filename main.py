import argparse
import logging
import sys

from stocklink.exceptions import StockLinkError
from stocklink.logger import setup_logger
from stocklink.pipelines.audit import DriftAuditPipeline
from stocklink.pipelines.relationships import RelationshipReportPipeline
from stocklink.schemas import Ok, ReconcileStatus, RepairStrategy
from stocklink.service import StockLinkService

logger = logging.getLogger("stocklink.cli")


def _print_result(result) -> int:
    if isinstance(result, Ok):
        logger.info(f"✅ OK {result.message}".rstrip())
        return 0
    logger.error(f"❌ {result.model_dump_json(indent=2)}")
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Keep source/dependent stock links consistent across catalog items."
    )
    parser.add_argument("--test-mode", action="store_true", help="Skip webhook posts.")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("setup", help="Create the relationship attribute definitions.")
    sub.add_parser("snapshot", help="Poll the catalog export and show its state.")
    sub.add_parser("report", help="Write the source/dependent relationship report.")
    sub.add_parser("audit", help="Check every linked item for drift.")
    sub.add_parser("limit", help="Show synced items against the plan limit.")

    p = sub.add_parser("promote", help="Make an item a stock source.")
    p.add_argument("item_id")
    p = sub.add_parser("demote", help="Stop an item from being a stock source.")
    p.add_argument("item_id")

    p = sub.add_parser("add", help="Link a dependent to a source.")
    p.add_argument("source_id")
    p.add_argument("candidate_id")
    p.add_argument("--ratio", default="1")
    p = sub.add_parser("remove", help="Unlink a dependent from its source.")
    p.add_argument("source_id")
    p.add_argument("candidate_id")
    p = sub.add_parser("ratio", help="Set a dependent's ratio.")
    p.add_argument("dependent_id")
    p.add_argument("ratio")

    p = sub.add_parser("reconcile", help="Check one link for drift.")
    p.add_argument("item_id")
    p.add_argument("--source", default=None)
    p = sub.add_parser("repair", help="Fix drift found by reconcile.")
    p.add_argument("item_id")
    p.add_argument("--source", default=None)
    p.add_argument("--strategy", choices=[s.value for s in RepairStrategy], required=True)

    p = sub.add_parser("details", help="Show a source and its dependents.")
    p.add_argument("source_id")
    p = sub.add_parser("verify", help="Check whether an item can become a dependent.")
    p.add_argument("item_id")
    return parser


def run(args: argparse.Namespace, service: StockLinkService) -> int:
    if args.command == "setup":
        created = service.store.ensure_definitions()
        logger.info(f"Created definitions: {created or 'none'}")
        return 0

    if args.command == "snapshot":
        view = service.get_snapshot()
        logger.info(f"Export state: {view.state.value} (in progress: {view.in_progress})")
        if view.snapshot:
            logger.info(f"Snapshot v{view.snapshot.version}: {len(view.snapshot.items())} items")
        return 0 if view.error is None else 1

    if args.command == "report":
        rows = RelationshipReportPipeline(service, test_mode=args.test_mode).run()
        return 0 if rows is not None else 1

    if args.command == "audit":
        rows = DriftAuditPipeline(service, test_mode=args.test_mode).run()
        if rows is None:
            return 1
        return 0 if not rows else 2

    if args.command == "limit":
        service.get_snapshot()
        status = service.check_limit()
        logger.info(status.model_dump_json(indent=2))
        return 0 if not status.over_limit else 2

    # Edits are validated against the current view, so load it first.
    service.get_snapshot()

    if args.command == "promote":
        return _print_result(service.promote_to_source(args.item_id))
    if args.command == "demote":
        return _print_result(service.demote_from_source(args.item_id))
    if args.command == "add":
        return _print_result(service.add_dependent(args.source_id, args.candidate_id, args.ratio))
    if args.command == "remove":
        return _print_result(service.remove_dependent(args.source_id, args.candidate_id))
    if args.command == "ratio":
        return _print_result(service.set_ratio(args.dependent_id, args.ratio))

    if args.command == "reconcile":
        report = service.reconcile(args.item_id, args.source)
        logger.info(report.model_dump_json(indent=2))
        return 0 if report.status == ReconcileStatus.CONSISTENT else 2
    if args.command == "repair":
        report = service.reconcile(args.item_id, args.source)
        return _print_result(service.repair(report, RepairStrategy(args.strategy)))

    if args.command == "details":
        for item_id, detail in service.source_details(args.source_id).items():
            if detail.degraded:
                logger.warning(f"{item_id}: unavailable ({detail.error})")
            else:
                item = detail.item
                logger.info(f"{item_id}: {item.title} [{item.sku}] qty={item.inventory_quantity} ratio={item.ratio}")
        return 0
    if args.command == "verify":
        status = service.verify_candidate(args.item_id)
        logger.info(status.model_dump_json(indent=2))
        return 0 if status.available else 2

    return 1


def main(argv=None) -> int:
    setup_logger()
    args = build_parser().parse_args(argv)
    try:
        return run(args, StockLinkService.from_settings())
    except StockLinkError as e:
        logger.error(f"❌ {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
