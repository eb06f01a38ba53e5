"""Entrypoint for `python -m VramPack`.

Usage:
  - Full pipeline: `python -m VramPack pack`
  - Single stage:  `python -m VramPack pack-gltf --force`
"""
import logging

logger = logging.getLogger("vram_pack")


def _run_cli():
    from .cli import main as cli_main
    logger.debug("Dispatching to CLI entrypoint.")
    cli_main()


if __name__ == "__main__":
    _run_cli()
