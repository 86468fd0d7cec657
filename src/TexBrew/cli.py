"""Command-line interface for the texture converter."""

import argparse
import glob
import logging
import os
import signal
import sys
from typing import List, Tuple

from .config import RunConfig
from .core import setup_logging
from .core.records import Outcome, RunReport

logger = logging.getLogger("texture_pipeline")

TIFF_EXTENSIONS = (".tif", ".tiff")
_GLOB_CHARS = "*?["

_LABELS = {
    Outcome.CONVERTED: "OK",
    Outcome.SKIPPED_EXISTS: "EXISTS",
    Outcome.SKIPPED_PREVIEW: "PREVIEW",
    Outcome.FAILED: "FAILED",
}


def expand_inputs(patterns: List[str]) -> Tuple[List[str], List[str]]:
    """Expand CLI patterns into an ordered, de-duplicated file list.

    Directories contribute their ``.tif``/``.tiff`` files; glob patterns are
    expanded here for shells that pass them through verbatim.

    Returns:
        ``(paths, unmatched_patterns)``
    """
    paths: List[str] = []
    unmatched: List[str] = []
    seen = set()
    for pattern in patterns:
        if os.path.isdir(pattern):
            matches = sorted(
                os.path.join(pattern, name) for name in os.listdir(pattern)
                if name.lower().endswith(TIFF_EXTENSIONS)
            )
        elif any(ch in pattern for ch in _GLOB_CHARS):
            matches = sorted(glob.glob(pattern))
        else:
            matches = [pattern] if os.path.exists(pattern) else []
        matches = [m for m in matches if os.path.isfile(m)]
        if not matches:
            unmatched.append(pattern)
            continue
        for match in matches:
            key = os.path.normcase(os.path.abspath(match))
            if key in seen:
                continue
            seen.add(key)
            paths.append(match)
    return paths, unmatched


def print_summary(report: RunReport) -> None:
    """Print one line per file and material, then the totals."""
    for result in report.files:
        label = _LABELS[result.outcome]
        name = result.source.filename
        if result.failed:
            print(f"{label}: {name} ({result.reason.value}): {result.message}")
        elif result.outcome is Outcome.SKIPPED_PREVIEW:
            extra = f" [{', '.join(result.notes)}]" if result.notes else ""
            print(f"{label}: {name} -> {result.destination}{extra}")
        else:
            print(f"{label}: {name}")
    for material in report.materials:
        label = _LABELS[material.outcome]
        flag = "" if material.complete else " (incomplete: no albedo)"
        if material.failed:
            print(f"MATERIAL {label}: {material.path} ({material.reason.value}): "
                  f"{material.message}")
        else:
            print(f"MATERIAL {label}: {material.path}{flag}")
    print(
        f"{report.converted} converted, {report.skipped} skipped, "
        f"{report.failed} failed, {len(report.materials)} material(s)"
        + (" (preview)" if report.preview else "")
        + (" (cancelled)" if report.cancelled else "")
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="TexBrew",
        description="Batch-convert TIFF textures to JPEG and build Godot materials",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  TexBrew "*.tif"
  TexBrew textures/ -o converted/ --material
  TexBrew "wall_*.tiff" --allow-overwrites --quality 90
  TexBrew "*.tif" --dry-run
  TexBrew --generate-config --config texbrew.yaml
        """
    )
    parser.add_argument("patterns", nargs="*", metavar="PATTERN",
                        help="Files, directories or glob patterns of TIFF inputs")
    parser.add_argument("--output", "-o", help="Destination directory")
    parser.add_argument("--allow-overwrites", action="store_true",
                        help="Replace existing output files")
    parser.add_argument("--dry-run", action="store_true",
                        help="Report what would happen without writing anything")
    parser.add_argument("--material", action="store_true",
                        help="Generate Godot StandardMaterial3D .tres files")
    parser.add_argument("--config", "-c", help="Path to config YAML")
    parser.add_argument("--workers", type=int, help="Max parallel workers")
    parser.add_argument("--quality", type=int, help="JPEG quality (1-100)")
    parser.add_argument("--report", help="Write a JSON run report to this path")
    parser.add_argument("--log-file", help="Also log to this file (rotated)")
    parser.add_argument("--log-level",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    parser.add_argument("--generate-config", action="store_true",
                        help="Write a default config YAML and exit")
    return parser


def main(argv=None):
    """Parse CLI arguments, run the pipeline, and exit with its status."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.generate_config:
        dest = args.config or "texbrew.yaml"
        if os.path.isdir(dest):
            dest = os.path.join(dest, "texbrew.yaml")
        RunConfig().to_yaml(dest)
        print(f"Generated default {dest}")
        return

    if not args.patterns:
        print("You must provide a search pattern, for example: *.tif", file=sys.stderr)
        sys.exit(1)

    # Ensure early validation warnings from from_yaml() are visible on stderr
    # before the full logging setup.
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")

    if args.config:
        if not os.path.exists(args.config):
            print(f"Error: Config file not found: {args.config}", file=sys.stderr)
            sys.exit(1)
        try:
            config = RunConfig.from_yaml(args.config)
        except ValueError as e:
            print(f"Error: Invalid config: {e}", file=sys.stderr)
            sys.exit(1)
    else:
        config = RunConfig()

    # CLI overrides
    if args.output:
        config.destination_dir = args.output
    if args.allow_overwrites:
        config.allow_overwrite = True
    if args.dry_run:
        config.preview = True
    if args.material:
        config.generate_material = True
    if args.workers is not None:
        config.max_workers = args.workers
    if args.quality is not None:
        config.conversion.jpeg_quality = args.quality
    if args.report:
        config.report_path = args.report
    if args.log_level:
        config.log_level = args.log_level

    setup_logging(config.log_level, args.log_file)

    try:
        config.validate()
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)

    paths, unmatched = expand_inputs(args.patterns)
    for pattern in unmatched:
        logger.warning("No files match '%s'", pattern)
    if not paths:
        print("File list is empty. Review the search pattern and make sure "
              "you're in the right directory.", file=sys.stderr)
        sys.exit(1)
    config.input_paths = paths

    from .pipeline import TexturePipeline
    pipeline = TexturePipeline(config)

    def _sigterm_handler(signum, frame):
        logger.warning("Received SIGTERM. Finishing in-flight conversions...")
        pipeline.request_cancel()

    previous = None
    if hasattr(signal, "SIGTERM"):
        previous = signal.signal(signal.SIGTERM, _sigterm_handler)
    try:
        report = pipeline.run()
    except KeyboardInterrupt:
        logger.warning("Interrupted by user.")
        sys.exit(130)
    finally:
        if previous is not None:
            signal.signal(signal.SIGTERM, previous)

    print_summary(report)
    if report.cancelled:
        sys.exit(130)
    if report.has_failures:
        sys.exit(1)


if __name__ == "__main__":
    main()
