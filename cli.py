# cli.py

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from components.service import VisualMatchService
from config import SystemConfig
from core.errors import VismatchError
from security.input_validation import SecurityValidator
from utils.file_utils import format_file_size
from utils.logging_config import setup_logging
from utils.report_generator import DuplicateReportGenerator

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = "config.yaml"


def _read_image(path: str) -> bytes:
    with open(path, 'rb') as f:
        return f.read()


def ingest_command(service: VisualMatchService, args):
    """Upload an image into a project"""
    name = args.name or SecurityValidator.sanitize_filename(Path(args.image).name)
    result = service.ingestor.ingest(args.project, name, _read_image(args.image))

    action = "Replaced" if result.replaced else "Stored"
    print(f"{action} {result.identifier} in project {result.project_id} "
          f"(sha256 {result.checksum[:12]})")


def query_command(service: VisualMatchService, args):
    """Find the closest images in a project"""
    results = service.engine.query(args.project, _read_image(args.image), k=args.top_k)

    if args.output == 'json':
        print(json.dumps([r.to_dict() for r in results], indent=2))
        return

    if not results:
        print(f"Project {args.project} has no images.")
        return

    print(f"Top {len(results)} matches in {args.project}:")
    for r in results:
        print(f"{r.rank}. {r.identifier} (distance: {r.distance:.2f}, "
              f"similarity: {r.similarity:.4f})")


def duplicates_command(service: VisualMatchService, args):
    """List near-duplicates of an image, optionally as an HTML report"""
    query_data = _read_image(args.image)
    duplicates = service.duplicates.find(
        args.project, query_data,
        k=args.top_k,
        max_distance=args.threshold,
        verify=False if args.no_ssim else None,
        with_image=bool(args.report)
    )

    print(f"Found {len(duplicates)} near-duplicates of {args.image}")
    for d in duplicates:
        ssim_text = "" if d.ssim is None else f", ssim: {d.ssim:.3f}"
        mark = " [verified]" if d.verified else ""
        print(f"  - {d.identifier} (distance: {d.distance:.2f}{ssim_text}){mark}")

    if args.report:
        DuplicateReportGenerator().generate_report(
            args.project, Path(args.image).name, query_data, duplicates, args.report
        )
        print(f"Report saved to: {args.report}")


def remove_command(service: VisualMatchService, args):
    """Delete an image from a project"""
    if service.ingestor.remove(args.project, args.name):
        print(f"Removed {args.name} from {args.project}")
    else:
        print(f"{args.name} not found in {args.project}")
        return 1


def projects_command(service: VisualMatchService, args):
    """Load every project and print its size"""
    total = service.warm_up()
    status = service.status()

    for entry in status['projects']:
        print(f"{entry['project_id']}: {entry['size']} images")
    print(f"{total} images total")
    print(f"Process memory: {status['process_memory_gb']:.2f} GB "
          f"(limit {status['memory_limit_gb']:.1f} GB, "
          f"{status['system']['memory_available_gb']:.1f} GB available)")


def cache_command(service: VisualMatchService, args):
    """Maintain the fingerprint cache"""
    cache = service.cache
    if cache is None:
        print("Fingerprint cache is disabled (feature_extraction.cache_features: false)")
        return 1

    if args.action == 'prune':
        removed = 0
        for project_id in cache.projects():
            removed += cache.prune(project_id, service.store.list_images(project_id))
        print(f"Pruned {removed} stale fingerprints; {cache.count()} remain")
    elif args.action == 'compact':
        db_path = Path(service.config.database_path)
        cache.compact()
        if db_path.exists():
            print(f"Compacted {db_path} ({format_file_size(db_path.stat().st_size)})")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="vismatch - per-project visual similarity matching"
    )
    parser.add_argument('-c', '--config',
                        default=os.environ.get('VISMATCH_CONFIG', DEFAULT_CONFIG),
                        help='YAML configuration file')
    parser.add_argument('--log-level', help='Override configured log level')
    parser.add_argument('--metrics', help='Write per-operation timings to this JSON file')
    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # Ingest command
    ingest_parser = subparsers.add_parser('ingest', help='Add an image to a project')
    ingest_parser.add_argument('project', help='Project id')
    ingest_parser.add_argument('image', help='Path to image file')
    ingest_parser.add_argument('-n', '--name', help='Identifier to store the image under')
    ingest_parser.set_defaults(func=ingest_command)

    # Query command
    query_parser = subparsers.add_parser('query', help='Search a project for similar images')
    query_parser.add_argument('project', help='Project id')
    query_parser.add_argument('image', help='Path to query image')
    query_parser.add_argument('-k', '--top-k', type=int, default=None,
                              help='Number of results to return')
    query_parser.add_argument('-o', '--output', choices=['text', 'json'], default='text',
                              help='Output format')
    query_parser.set_defaults(func=query_command)

    # Duplicate detection command
    duplicate_parser = subparsers.add_parser('duplicates',
                                             help='Find near-duplicates of an image')
    duplicate_parser.add_argument('project', help='Project id')
    duplicate_parser.add_argument('image', help='Path to query image')
    duplicate_parser.add_argument('-t', '--threshold', type=float, default=None,
                                  help='Maximum fingerprint distance')
    duplicate_parser.add_argument('-k', '--top-k', type=int, default=None,
                                  help='Maximum candidates to consider')
    duplicate_parser.add_argument('--no-ssim', action='store_true',
                                  help='Skip SSIM verification')
    duplicate_parser.add_argument('-r', '--report', help='Output HTML report path')
    duplicate_parser.set_defaults(func=duplicates_command)

    # Remove command
    remove_parser = subparsers.add_parser('remove', help='Delete an image from a project')
    remove_parser.add_argument('project', help='Project id')
    remove_parser.add_argument('name', help='Image identifier')
    remove_parser.set_defaults(func=remove_command)

    # Projects command
    projects_parser = subparsers.add_parser('projects', help='List projects and sizes')
    projects_parser.set_defaults(func=projects_command)

    # Cache command
    cache_parser = subparsers.add_parser('cache', help='Fingerprint cache maintenance')
    cache_parser.add_argument('action', choices=['prune', 'compact'])
    cache_parser.set_defaults(func=cache_command)

    return parser


def main_cli(argv=None) -> int:
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    config = SystemConfig.load(args.config)
    setup_logging(args.log_level or config.log_level, config.log_dir,
                  structured=config.structured_logging)

    try:
        with VisualMatchService(config) as service:
            code = args.func(service, args) or 0
            if args.metrics:
                service.perf_logger.save_metrics(args.metrics)
            return code
    except VismatchError as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main_cli())
