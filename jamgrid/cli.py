"""Command line entry point."""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

from jamgrid.config import Settings, get_settings, parse_cell
from jamgrid.database import (
    Base,
    RemoteBase,
    create_tables,
    make_local_engine,
    make_remote_engine,
    make_session_maker,
)
from jamgrid.exceptions import JamGridError, StartupError
from jamgrid.services.pipeline import CapturePipeline, PeriodicCaptureService
from jamgrid.services.replication import create_replication_service
from jamgrid.services.store import LocalStore

logger = logging.getLogger(__name__)

FOLDER_FLAGS = {
    "ss_folder": "directory storing temp screenshots",
    "mask_folder": "directory storing temp masks",
    "db_folder": "directory storing db files",
    "ss_comb_folder": "directory storing combined screenshots",
    "mask_comb_folder": "directory storing combined masks",
    "isolate_folder": "directory storing isolated grids",
}


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="jamgrid",
        description="Capture traffic map tiles, classify congestion and store the results.",
    )
    for name, help_text in FOLDER_FLAGS.items():
        ap.add_argument(f"--{name.replace('_', '-')}", dest=name, default="", help=help_text)

    mode = ap.add_mutually_exclusive_group()
    mode.add_argument("--ss", action="store_true", help="take screenshots once and analyze")
    mode.add_argument("--analyze", metavar="PREFIX", default="", help="analyze existing screenshots with prefix")
    mode.add_argument("--isolate", metavar="X,Y", default="", help="isolate a particular grid from the map e.g. 0,0")
    mode.add_argument("--serve", action="store_true", help="run the HTTP API (settings from the environment)")

    ap.add_argument("--host", default="0.0.0.0", help="HTTP bind address for --serve")
    ap.add_argument("--port", type=int, default=8000, help="HTTP port for --serve")
    return ap


def build_settings(args: argparse.Namespace) -> Settings:
    """Environment settings with folder flags applied on top."""
    overrides = {name: Path(getattr(args, name)) for name in FOLDER_FLAGS if getattr(args, name)}
    return get_settings().model_copy(update=overrides)


def install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)


async def run_periodic(
    settings: Settings,
    pipeline: CapturePipeline,
    store: LocalStore,
    stop: asyncio.Event,
) -> None:
    """Capture on every tick and replicate until a shutdown signal arrives."""
    remote_engine = None
    replication = None
    if settings.replication_enabled:
        remote_engine = make_remote_engine(settings.remote_database_url)
        try:
            await create_tables(remote_engine, RemoteBase)
        except (SQLAlchemyError, OSError) as e:
            await remote_engine.dispose()
            raise StartupError(f"error in opening remote store: {e}") from e
        replication = create_replication_service(
            settings, store, session_maker=make_session_maker(remote_engine), stop=stop
        )
    else:
        logger.info("No remote database configured, replication disabled")

    capture = PeriodicCaptureService.from_settings(settings, pipeline, replication, stop=stop)
    try:
        if replication is not None:
            await replication.start()
        await capture.start()
        await stop.wait()
    finally:
        await capture.stop()
        if replication is not None:
            await replication.stop()
        if remote_engine is not None:
            await remote_engine.dispose()


async def run(args: argparse.Namespace, settings: Settings) -> None:
    stop = asyncio.Event()
    install_signal_handlers(stop)

    engine = make_local_engine(settings.local_db_url)
    store = LocalStore(make_session_maker(engine))
    pipeline = CapturePipeline.from_settings(settings, store)
    pipeline.create_folders()
    try:
        try:
            await create_tables(engine, Base)
        except (SQLAlchemyError, OSError) as e:
            raise StartupError(f"error in opening local store: {e}") from e

        if args.ss:
            await pipeline.run_cycle(stop)
        elif args.analyze:
            await pipeline.analyze_batch(args.analyze)
        elif args.isolate:
            x, y = parse_cell(args.isolate)
            await pipeline.isolate(x, y, stop)
        else:
            await run_periodic(settings, pipeline, store, stop)
    finally:
        await engine.dispose()


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    settings = build_settings(args)

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.serve:
        import uvicorn

        uvicorn.run("jamgrid.main:app", host=args.host, port=args.port)
        return

    try:
        asyncio.run(run(args, settings))
    except StartupError as e:
        logger.error(f"startup failed: {e}")
        sys.exit(1)
    except (JamGridError, ValueError) as e:
        logger.error(str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
