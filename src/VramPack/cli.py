"""Command-line interface for the asset build pipeline."""

import argparse
import logging
import os
import sys

from .config import PipelineConfig
from .core import ToolError, setup_logging

logger = logging.getLogger("vram_pack")

DEFAULT_CONFIG_NAME = "vrampack.yaml"

COMMANDS = (
    "clean", "scan-duplicates", "convert-images", "pack-gltf",
    "finalize-models", "pack", "build-ktx2", "compress-glb",
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vrampack",
        description="Compress and pack game assets for VRAM-constrained delivery",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  vrampack pack
  vrampack --root ./web pack-gltf --force
  vrampack scan-duplicates --hardlink
  vrampack --config vrampack.yaml convert-images
  vrampack build-ktx2 ui
  vrampack compress-glb public/models/city.glb --level 7
  vrampack --generate-config
        """
    )
    parser.add_argument("--config", "-c", help="Path to config YAML")
    parser.add_argument("--root", "-r", help="Repository root (overrides repo_root)")
    parser.add_argument("--workers", type=int,
                        help="Max parallel tool invocations")
    parser.add_argument("--log-level",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    parser.add_argument("--generate-config", action="store_true",
                        help=f"Write the default config to --config or {DEFAULT_CONFIG_NAME}")

    sub = parser.add_subparsers(dest="command", metavar="command")
    sub.add_parser("clean", help="Remove leftovers of interrupted runs")
    dup = sub.add_parser("scan-duplicates", help="Report byte-identical images")
    dup.add_argument("--hardlink", action="store_true",
                     help="Replace duplicates with hardlinks to the first copy")
    sub.add_parser("convert-images", help="Produce AVIF/WebP/KTX2 siblings")
    gltf = sub.add_parser("pack-gltf", help="Compress and pack glTF/GLB models")
    gltf.add_argument("--force", action="store_true",
                      help="Repack models even when up to date")
    sub.add_parser("finalize-models", help="Promote .packed.glb over sources")
    full = sub.add_parser("pack", help="Run every stage in order")
    full.add_argument("--hardlink", action="store_true")
    full.add_argument("--force", action="store_true")
    ktx = sub.add_parser("build-ktx2", help="KTX2 for every image under the configured roots")
    ktx.add_argument("root_name", nargs="?", metavar="root",
                     help="Only this root (default: all; e.g. textures, ui)")
    ktx.add_argument("--force", action="store_true",
                     help="Rebuild even when the .ktx2 is up to date")
    draco = sub.add_parser("compress-glb", help="Quick Draco-only compress of one model")
    draco.add_argument("input", help="Model to compress")
    draco.add_argument("output", nargs="?",
                       help="Output path (default: <base>.draco.glb next to the input)")
    draco.add_argument("--level", type=int, help="Compression level 0-10 (default 10)")
    return parser


def load_config(args) -> PipelineConfig:
    """Build the run configuration: file, then environment, then CLI flags."""
    if args.config:
        if not os.path.exists(args.config):
            raise ValueError(f"Config file not found: {args.config}")
        config = PipelineConfig.from_yaml(args.config)
    else:
        root = args.root or "."
        default_path = os.path.join(root, DEFAULT_CONFIG_NAME)
        if os.path.exists(default_path):
            config = PipelineConfig.from_yaml(default_path)
        else:
            config = PipelineConfig()

    config.apply_env_overrides()
    if args.root:
        config.repo_root = args.root
    if args.workers is not None:
        config.concurrency = args.workers
    if args.log_level:
        config.log_level = args.log_level
    if getattr(args, "force", False) and args.command != "build-ktx2":
        config.models.force = True
    config.validate()
    return config


def _run_command(command: str, args, config: PipelineConfig) -> int:
    if command == "clean":
        from .phases.cleanup import clean_artifacts
        clean_artifacts(config)
        return 0
    if command == "scan-duplicates":
        from .phases.duplicates import DuplicateScanner
        DuplicateScanner(config).run(hardlink=args.hardlink)
        return 0
    if command == "convert-images":
        from .phases.images import ImageConverter
        ImageConverter(config).run()
        return 0
    if command == "pack-gltf":
        from .phases.models import ModelPacker
        result = ModelPacker(config).run(force=config.models.force)
        return 1 if result.failed else 0
    if command == "finalize-models":
        from .phases.finalize import ModelFinalizer
        ModelFinalizer(config).run()
        return 0
    if command == "build-ktx2":
        from .phases.images import build_ktx2_roots
        try:
            result = build_ktx2_roots(config, args.root_name, force=args.force)
        except (ValueError, ToolError) as exc:
            logger.error("build-ktx2: %s", exc)
            return 1
        return 1 if result.failed else 0
    if command == "compress-glb":
        from .phases.models import ModelPacker, ModelPackError
        try:
            ModelPacker(config).compress_draco(args.input, args.output, args.level)
        except (ModelPackError, ToolError, OSError) as exc:
            logger.error("compress-glb failed: %s", exc)
            return 1
        return 0

    from .pipeline import AssetPipeline, StageFailedError
    pipeline = AssetPipeline(config, hardlink=args.hardlink, force=config.models.force)
    try:
        result = pipeline.run()
    except StageFailedError as exc:
        logger.error("Pipeline aborted: %s", exc)
        return 1
    return 0 if result.ok else 1


def main(argv=None):
    """Parse CLI arguments, run the requested command and exit."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.generate_config:
        dest = args.config or DEFAULT_CONFIG_NAME
        if os.path.isdir(dest):
            dest = os.path.join(dest, DEFAULT_CONFIG_NAME)
        PipelineConfig().to_yaml(dest)
        print(f"Generated default {dest}")
        return

    if not args.command:
        parser.print_help()
        sys.exit(2)

    # Ensure early validation warnings from from_yaml() are visible on stderr
    # before the configured logging is in place.
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")

    try:
        config = load_config(args)
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        print(f"Error: Invalid config: {e}", file=sys.stderr)
        sys.exit(1)

    log_file = None
    if config.log_file:
        log_file = os.path.join(os.path.abspath(config.repo_root), config.log_file)
    setup_logging(config.log_level, log_file, force=True)

    try:
        code = _run_command(args.command, args, config)
    except KeyboardInterrupt:
        logger.warning("Interrupted by user.")
        sys.exit(130)
    sys.exit(code)


if __name__ == "__main__":
    main()
