from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from contextlib import suppress
from logging.handlers import RotatingFileHandler

from dotenv import load_dotenv

from mermaid_images.config import Settings, load_settings
from mermaid_images.generator import MermaidImageGenerator

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_PARTIAL = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mermaid-images",
        description="Render mermaid code blocks in Markdown files to images and link them in place.",
    )
    parser.add_argument("--docs", help="Documents directory (default: $MERMAID_DOCS_DIR or ./docs)")
    parser.add_argument(
        "--output", help="Image output directory (default: $MERMAID_OUTPUT_DIR or ./assets/mermaid)"
    )
    parser.add_argument(
        "--config", help="Rendering options file (default: $MERMAID_CONFIG_FILE or ./mermaid-config.json)"
    )
    parser.add_argument(
        "--fail-on-partial",
        action="store_true",
        default=None,
        help=f"Exit with {EXIT_PARTIAL} when any diagram could not be rendered",
    )
    parser.add_argument(
        "--hash-filenames",
        action="store_true",
        default=None,
        help="Append a short path hash to image names to rule out collisions",
    )
    return parser


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _level(name: str | None) -> int:
    return getattr(logging, (name or "INFO").upper(), logging.INFO)


def setup_console_logging() -> None:
    # Console first, so messages emitted while loading settings are kept
    level = _level(os.getenv("LOG_LEVEL"))
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger().setLevel(level)


def setup_logging(settings: Settings) -> None:
    # Console always; optional rotating file
    level = _level(settings.log_level)
    root = logging.getLogger()
    root.setLevel(level)
    if settings.log_file:
        try:
            settings.log_file.parent.mkdir(parents=True, exist_ok=True)
            fh = RotatingFileHandler(
                settings.log_file,
                maxBytes=settings.log_max_bytes,
                backupCount=settings.log_backups,
                encoding="utf-8",
            )
            fh.setLevel(level)
            fh.setFormatter(logging.Formatter(LOG_FORMAT))
            root.addHandler(fh)
        except Exception:
            logging.exception("Failed to set up file logging")


async def run(settings: Settings) -> int:
    """Run one generation pass and map its outcome to an exit code."""
    generator = MermaidImageGenerator(settings)

    # SIGTERM cancels the run so the browser is still released
    task = asyncio.current_task()
    loop = asyncio.get_running_loop()
    if task is not None:
        with suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(signal.SIGTERM, task.cancel)

    logging.info("Rendering mermaid diagrams under %s", settings.docs_dir)
    try:
        summary = await generator.run()
    except Exception:
        logging.exception("Fatal error, generation aborted (state: %s)", generator.state.value)
        return EXIT_FATAL
    finally:
        with suppress(NotImplementedError, RuntimeError):
            loop.remove_signal_handler(signal.SIGTERM)

    if summary.partial and settings.fail_on_partial:
        logging.warning("Some diagrams were not rendered")
        return EXIT_PARTIAL
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    # Load .env if present
    load_dotenv()
    setup_console_logging()

    try:
        settings = load_settings(
            docs_dir=args.docs,
            output_dir=args.output,
            config_file=args.config,
            fail_on_partial=args.fail_on_partial,
            hash_filenames=args.hash_filenames,
        )
    except (RuntimeError, ValueError, OSError) as e:
        logging.error("Configuration error: %s", e)
        return EXIT_FATAL

    setup_logging(settings)
    try:
        return asyncio.run(run(settings))
    except (KeyboardInterrupt, asyncio.CancelledError):
        logging.warning("Interrupted")
        return EXIT_FATAL


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
