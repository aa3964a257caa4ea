#!/usr/bin/env python3
"""
Command line entry point for the product image linker
"""

import argparse
import logging
import sys
import threading
from typing import List

from database import LinkDatabase
from reconciler import ImageReconciler
from sku_linker.config import load_config, setup_logging
from sku_linker.errors import LinkerError
from sku_linker.models import CANDIDATE_STATUSES
from sku_linker.progress import ProgressChannel, STATUS_COMPLETED
from sku_linker.report import ScanReport
from sku_linker.storage import create_store

logger = logging.getLogger(__name__)

def print_report(report: ScanReport) -> None:
    print("\n" + "=" * 60)
    print("SCAN REPORT")
    print("=" * 60)
    print(f"Session:              {report.session_id}")
    print(f"Status:               {report.status}")
    print(f"Products in catalog:  {report.total_products}")
    print(f"Images in storage:    {report.total_images}")
    print(f"Already linked:       {report.linked_images}")
    print(f"Direct links created: {report.direct_links_created}")
    print(f"Candidates created:   {report.candidates_created}")
    print(f"Skipped (duplicates): {report.skipped}")
    print(f"Unresolved:           {report.unlinked_images}")
    print(f"Failed:               {report.failed}")
    print(f"Time:                 {report.processing_time_ms / 1000:.1f}s")

    if report.unresolved:
        print(f"\nUnresolved images ({report.unlinked_images}):")
        for item in report.unresolved[:20]:
            codes = ', '.join(item.extracted_codes) or '-'
            print(f"  - {item.filename} [{item.reason}] codes: {codes}")
        if report.unlinked_images > 20:
            print(f"  ... and {report.unlinked_images - 20} more")

    if report.errors:
        print(f"\nErrors ({report.error_count}):")
        for error in report.errors:
            print(f"  - {error}")
    print("=" * 60)


def wait_for_scan(thread: threading.Thread, channel: ProgressChannel, session_id: str,
                  poll_seconds: float = 0.5) -> None:
    """Wait for the scan thread. Ctrl-C requests a stop; repeated Ctrl-C keeps waiting."""
    while thread.is_alive():
        try:
            thread.join(poll_seconds)
        except KeyboardInterrupt:
            if channel.is_stop_requested(session_id):
                logger.info("Still stopping, waiting for the current batch to finish")
            else:
                logger.info("Interrupted by user, stopping after the current batch")
                channel.request_stop(session_id)


def cmd_scan(args, config: dict) -> int:
    if args.folder is not None:
        config['storage']['folder'] = args.folder
    if args.no_recursive:
        config['storage']['recursive'] = False

    db = LinkDatabase(config['database']['path'])
    try:
        store = create_store(config['storage'])
        channel = ProgressChannel()
        reconciler = ImageReconciler(config, db, store, channel)
        session_id = channel.open_session()

        result = {}

        def run():
            result['report'] = reconciler.run_scan(session_id)

        thread = threading.Thread(target=run)
        thread.daemon = True
        thread.start()
        wait_for_scan(thread, channel, session_id)
    finally:
        db.close()

    report = result.get('report')
    if report is None:
        print("Error: scan did not produce a report", file=sys.stderr)
        return 1

    print_report(report)
    if args.unresolved:
        path = report.export_unresolved(args.unresolved)
        print(f"Unresolved images written to {path}")
    return 0 if report.status == STATUS_COMPLETED else 1


def cmd_report(args, config: dict) -> int:
    db = LinkDatabase(config['database']['path'])
    try:
        report = db.get_latest_scan_report()
    finally:
        db.close()

    if report is None:
        print("No scan has been run yet")
        return 1

    print_report(report)
    if args.unresolved:
        path = report.export_unresolved(args.unresolved)
        print(f"Unresolved images written to {path}")
    return 0


def cmd_export(args, config: dict) -> int:
    db = LinkDatabase(config['database']['path'])
    try:
        success = db.export_candidates(args.output, status_filter=args.status)
    finally:
        db.close()

    if not success:
        print(f"Error: export to {args.output} failed", file=sys.stderr)
        return 1
    print(f"Candidates exported to {args.output}")
    return 0


COMMANDS = {
    'scan': cmd_scan,
    'report': cmd_report,
    'export': cmd_export,
}


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('--config', default='config.yaml', help='Configuration file path')
    common.add_argument('--verbose', '-v', action='store_true', help='Verbose output')

    parser = argparse.ArgumentParser(prog='sku-linker', description='Link stored product images to catalog products')
    subparsers = parser.add_subparsers(dest='command', required=True)

    scan_parser = subparsers.add_parser('scan', parents=[common], help='Scan storage and link images')
    scan_parser.add_argument('--folder', help='Storage folder to scan (default: storage.folder)')
    scan_parser.add_argument('--no-recursive', action='store_true', help='Do not descend into sub-folders')
    scan_parser.add_argument('--unresolved', help='Write unresolved images to this .csv/.xlsx file')

    report_parser = subparsers.add_parser('report', parents=[common], help='Show the latest scan report')
    report_parser.add_argument('--unresolved', help='Write unresolved images to this .csv/.xlsx file')

    export_parser = subparsers.add_parser('export', parents=[common], help='Export image candidates')
    export_parser.add_argument('output', help='Output .csv or .xlsx file')
    export_parser.add_argument('--status', default='all', choices=('all',) + CANDIDATE_STATUSES,
                               help='Only export candidates with this status')

    return parser


def main(argv: List[str] = None) -> int:
    """CLI entry point"""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Error: {str(e)}", file=sys.stderr)
        return 1

    if args.verbose:
        config['logging']['level'] = 'DEBUG'
    setup_logging(config)

    try:
        return COMMANDS[args.command](args, config)
    except (LinkerError, ValueError, OSError) as e:
        print(f"Error: {str(e)}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
