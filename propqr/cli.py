import argparse
import json
import logging
import sys

from propqr.services.events import bus
from propqr.services.registry import build_services
from propqr.session_factory import session_factory

# 로그 설정
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s'
)
logger = logging.getLogger("propqr.cli")


def _print(data) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2, default=str))


def run_command(args, services) -> int:
    lifecycle = services.lifecycle
    analytics = services.analytics

    if args.command == "sweep":
        logger.info("[CLI] Sweeping expired QR resources")
        swept = lifecycle.sweep_expired()
        _print({"swept": swept, "count": len(swept)})
        return 0

    if args.command == "generate":
        logger.info(f"[CLI] Generating {len(args.subject_ids)} QR resources (force={args.force})")
        _print(lifecycle.batch_generate(args.subject_ids, force=args.force, reason=args.reason).to_dict())
        return 0

    if args.command == "generate-missing":
        logger.info("[CLI] Generating QR resources for subjects without one")
        result = lifecycle.generate_missing(limit=args.limit)
        _print(result.to_dict())
        return 1 if result.failed else 0

    if args.command == "needing-regeneration":
        _print(lifecycle.list_needing_regeneration(within_days=args.within_days))
        return 0

    if args.command == "rebuild":
        if args.system:
            logger.info("[CLI] Rebuilding system rollup")
            view = analytics.rebuild_system()
            _print({"total_scans": view.total_scans})
        for subject_id in args.subject_ids:
            logger.info(f"[CLI] Rebuilding rollup for {subject_id}")
            view = analytics.rebuild(subject_id)
            _print({"subject_id": subject_id, "total_scans": view.total_scans})
        return 0

    if args.command == "reconcile":
        _print({"reconciled": analytics.reconcile(limit=args.limit)})
        return 0

    logger.error(f"[CLI] Unknown command: {args.command}")
    return 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="propqr", description="Property QR service maintenance commands")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("sweep", help="만료된 ACTIVE 리소스를 EXPIRED 로 확정")

    gen = sub.add_parser("generate", help="지정한 매물의 QR 생성")
    gen.add_argument("subject_ids", nargs="+")
    gen.add_argument("--force", action="store_true")
    gen.add_argument("--reason", default="cli")

    missing = sub.add_parser("generate-missing", help="QR 이 없는 매물 전체 생성")
    missing.add_argument("--limit", type=int, default=None)

    needing = sub.add_parser("needing-regeneration", help="재생성이 필요한 매물 목록")
    needing.add_argument("--within-days", type=int, default=0)

    rebuild = sub.add_parser("rebuild", help="이벤트 로그로부터 집계 재계산")
    rebuild.add_argument("subject_ids", nargs="*")
    rebuild.add_argument("--system", action="store_true")

    reconcile = sub.add_parser("reconcile", help="집계 누락 이벤트 재반영")
    reconcile.add_argument("--limit", type=int, default=1000)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    services = build_services(session_factory, bus=bus)
    try:
        return run_command(args, services)
    except Exception as e:
        logger.exception(f"[CLI] Command failed: {e}")
        return 1
    finally:
        services.shutdown()


if __name__ == "__main__":
    sys.exit(main())
