"""Main module for the document image optimizer CLI."""

import argparse
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import __version__
from .core.config import ConfigProvider
from .core.exceptions import ConfigError, ConsistencyError
from .core.factories import OptimizerFactory
from .core.logging_config import setup_logger
from .core.models import AssetReference, BatchResult, ImageRole, OptimizedImage, Technique
from .core.services import LocalFileAssetFetcher
from .processors.common import create_worker_pool

_EXTENSIONS = {"jpeg": ".jpg", "png": ".png", "webp": ".webp"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="doc-image-optimizer",
        description="Document Image Optimizer - batch image compression for generated documents",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Optimize the images of one document with settings from the environment
  doc-image-optimizer optimize cover.jpg logo.png --output-dir out/

  # Standard (non-aggressive) compression to WebP on four processes
  doc-image-optimizer optimize *.jpg --output-dir out/ --no-aggressive \\
                      --format webp --processor multiprocess

  # Show version
  doc-image-optimizer version
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    optimize_parser = subparsers.add_parser(
        "optimize", help="Optimize the images of one document"
    )
    optimize_parser.add_argument("files", nargs="+", help="Image files of the document")
    optimize_parser.add_argument(
        "--output-dir", required=True, help="Directory for the optimized images"
    )
    optimize_parser.add_argument(
        "--role",
        choices=[role.value for role in ImageRole],
        default=None,
        help="Role applied to every image (default: inferred from the file name)",
    )
    optimize_parser.add_argument("--max-width", type=int, help="Maximum width in pixels")
    optimize_parser.add_argument("--max-height", type=int, help="Maximum height in pixels")
    optimize_parser.add_argument("--min-width", type=int, help="Minimum width in pixels")
    optimize_parser.add_argument("--min-height", type=int, help="Minimum height in pixels")
    optimize_parser.add_argument(
        "--format",
        choices=sorted(_EXTENSIONS),
        default=None,
        help="Preferred output format",
    )
    optimize_parser.add_argument(
        "--no-aggressive",
        action="store_true",
        help="Disable the size-budget quality search",
    )
    optimize_parser.add_argument(
        "--retries", type=int, default=None, help="Retry budget per image"
    )
    optimize_parser.add_argument(
        "--processor",
        default="multithread",
        choices=["serial", "multithread", "multiprocess"],
        help="Worker pool strategy (default: multithread)",
    )
    optimize_parser.add_argument(
        "--workers", type=int, default=None, help="Worker pool size (default: CPU count)"
    )
    optimize_parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers.add_parser("version", help="Show version information")
    return parser


def profile_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Translate CLI flags into per-job profile overrides."""
    overrides: Dict[str, Any] = {}
    for field_name, width, height in (
        ("max_dimensions", args.max_width, args.max_height),
        ("min_dimensions", args.min_width, args.min_height),
    ):
        dims = {}
        if width is not None:
            dims["width"] = width
        if height is not None:
            dims["height"] = height
        if dims:
            overrides[field_name] = dims
    if args.format:
        overrides["preferred_format"] = args.format
    if args.no_aggressive:
        overrides["aggressive_mode"] = False
    if args.retries is not None:
        overrides["max_retries"] = args.retries
    return overrides


def output_path(output_dir: Path, source: str, image: OptimizedImage) -> Path:
    """Where an optimized image is written; degraded and pass-through copies keep the suffix."""
    source_path = Path(source)
    if image.technique in (Technique.PASSTHROUGH, Technique.FALLBACK):
        return output_dir / source_path.name
    return output_dir / (source_path.stem + _EXTENSIONS.get(image.format, source_path.suffix))


def write_results(
    output_dir: Path, sources: List[str], result: BatchResult
) -> List[Path]:
    output_dir.mkdir(parents=True, exist_ok=True)
    fetched = [source for source in sources if source not in result.omitted]
    written = []
    for source, image in zip(fetched, result.results):
        path = output_path(output_dir, source, image)
        path.write_bytes(image.data)
        written.append(path)
    return written


def run_optimize(args: argparse.Namespace) -> int:
    logger = setup_logger(level="DEBUG" if args.debug else None)

    try:
        profile = ConfigProvider().resolve_profile(profile_overrides(args))
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 2

    role: Optional[ImageRole] = ImageRole(args.role) if args.role else None
    references = [AssetReference(identifier=path, role=role) for path in args.files]

    with create_worker_pool(args.processor, max_workers=args.workers) as pool:
        coordinator = OptimizerFactory.create_coordinator(
            pool=pool, fetcher=LocalFileAssetFetcher()
        )
        try:
            result = coordinator.prepare_document(references, profile)
        except ConsistencyError as e:
            logger.error(f"Inconsistent batch: {e}")
            return 1

    written = write_results(Path(args.output_dir), args.files, result)
    stats = result.stats
    logger.info(
        f"Job {result.job_id} {result.status.value}: {len(written)} image(s) written, "
        f"{stats.degraded_count} degraded, {stats.omitted_count} omitted, "
        f"{stats.total_original_size} -> {stats.total_optimized_size} bytes "
        f"({stats.overall_compression_ratio:.1%} saved)"
    )
    for identifier, error in result.errors.items():
        logger.warning(f"{identifier}: {error}")
    return 0 if result.status.value == "completed" else 1


def main() -> None:
    """Entry point for the ``doc-image-optimizer`` command."""
    parser = build_parser()
    args = parser.parse_args()

    if args.command == "optimize":
        sys.exit(run_optimize(args))

    elif args.command == "version":
        print("Document Image Optimizer CLI")
        print(f"Version {__version__}")
        print("Batch image compression with multiple concurrency strategies")
        sys.exit(0)

    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
