
import asyncio
import argparse
import logging
import sys
from pathlib import Path

import yaml

from fieldsync.config import load_config
from fieldsync.crypto.cipher import PayloadCipher
from fieldsync.client.client import RemoteSyncClient
from fieldsync.server.server import SyncServer
from fieldsync.storage.repository import FileRepository
from fieldsync.sync.checkpoint import CheckpointStore
from fieldsync.sync.config import SyncConfig
from fieldsync.sync.engine import SyncEngine
from fieldsync.sync.models import SyncProgress

logger = logging.getLogger(__name__)


def setup_logging(log_file: str = 'fieldsync.log'):
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file)
        ]
    )


def build_config(args):
    """Merge the YAML file (if any) with command line overrides"""
    config = load_config(Path(args.config) if args.config else None)

    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port
    if args.data_dir:
        config.storage.data_dir = args.data_dir
    if args.secret:
        config.storage.secret = args.secret

    overrides = {}
    if args.direction:
        overrides['direction'] = args.direction
    if args.strategy:
        overrides['strategy'] = args.strategy
    if args.batch_size:
        overrides['batch_size'] = args.batch_size

    if overrides:
        current = config.sync
        config.sync = SyncConfig(
            direction=overrides.get('direction', current.direction),
            strategy=overrides.get('strategy', current.strategy),
            batch_size=overrides.get('batch_size', current.batch_size),
            max_attempts=current.max_attempts,
            base_delay=current.base_delay
        )

    return config


def log_progress(progress: SyncProgress):
    if progress.total_items:
        logger.debug(f"[{progress.percentage:3d}%] {progress.message}")
    elif progress.message:
        logger.info(progress.message)


async def run_server(config):
    """Run server mode"""
    logger.info("=== Starting fieldsync server ===")

    cipher = PayloadCipher.from_passphrase(config.storage.secret) if config.storage.secret else None
    server = SyncServer(host=config.server.host, port=config.server.port, cipher=cipher)

    try:
        await server.run()
    except asyncio.CancelledError:
        logger.info("Server shutdown requested")
        raise


async def run_client(config, interval: float = 0.0, force: bool = False):
    """Run client mode: one pass, or one pass every ``interval`` seconds"""
    logger.info("=== Starting fieldsync client ===")

    data_dir = config.data_dir
    data_dir.mkdir(parents=True, exist_ok=True)

    cipher = PayloadCipher.from_passphrase(config.storage.secret) if config.storage.secret else None
    repository = FileRepository(data_dir / "records.json", cipher=cipher)
    api_client = RemoteSyncClient(config.server.host, config.server.port, cipher=cipher)

    engine = SyncEngine(
        repository,
        api_client,
        config=config.sync,
        checkpoint_store=CheckpointStore(data_dir / "checkpoint.json")
    )
    engine.add_progress_listener(log_progress)

    logger.info(f"Syncing {data_dir} with {config.server.host}:{config.server.port} "
                f"({config.sync.direction.value}, {config.sync.strategy.value})")

    try:
        while True:
            if force:
                result = await engine.force_sync()
                force = False
            else:
                result = await engine.sync()

            if result.success:
                logger.info(
                    f"Pass finished in {result.duration:.2f}s: "
                    f"{result.uploaded} up, {result.downloaded} down, "
                    f"{result.conflicts} conflicts, {result.errors} errors")
            else:
                logger.warning(f"Pass failed: {result.error_message}")

            if interval <= 0:
                return result
            await asyncio.sleep(interval)
    finally:
        await api_client.close()


def create_parser():
    """Create argument parser"""
    parser = argparse.ArgumentParser(
        description='fieldsync - offline-first record synchronization',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start server
  python main.py server --host 0.0.0.0 --port 8443

  # Sync once
  python main.py client --host localhost --port 8443

  # Sync every 60 seconds, newest edit wins
  python main.py client --interval 60 --strategy last_write_wins
        """
    )

    # Mode selection
    parser.add_argument(
        'mode',
        choices=['server', 'client'],
        help='Execution mode'
    )

    parser.add_argument(
        '--config',
        help='YAML configuration file'
    )
    parser.add_argument(
        '--host',
        help='Server hostname (default: localhost)'
    )
    parser.add_argument(
        '--port',
        type=int,
        help='Server port (default: 8443)'
    )
    parser.add_argument(
        '--data-dir',
        help='Local data directory (default: ./sync_data)'
    )
    parser.add_argument(
        '--secret',
        help='Shared passphrase for encrypting traffic and local data'
    )

    # Sync arguments
    parser.add_argument(
        '--direction',
        choices=['upload', 'download', 'bidirectional'],
        help='Sync direction (default: bidirectional)'
    )
    parser.add_argument(
        '--strategy',
        choices=['server_wins', 'local_wins', 'last_write_wins'],
        help='Conflict resolution strategy (default: server_wins)'
    )
    parser.add_argument(
        '--batch-size',
        type=int,
        help='Upload batch size (default: 50)'
    )
    parser.add_argument(
        '--interval',
        type=float,
        default=0.0,
        help='Seconds between passes; 0 syncs once (default: 0)'
    )
    parser.add_argument(
        '--force',
        action='store_true',
        help='Ignore the saved checkpoint and pull everything'
    )

    # Logging
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )
    parser.add_argument(
        '--quiet',
        action='store_true',
        help='Minimal output'
    )

    return parser


async def main(argv=None):
    """Main entry point"""
    parser = create_parser()
    args = parser.parse_args(argv)

    # Adjust logging level
    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
    elif args.quiet:
        logging.getLogger().setLevel(logging.WARNING)

    try:
        config = build_config(args)
    except (OSError, TypeError, ValueError, yaml.YAMLError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    if args.mode == 'server':
        await run_server(config)
        return 0

    result = await run_client(config, interval=args.interval, force=args.force)
    return 0 if result is None or result.success else 1


def run():
    """Console script entry point"""
    setup_logging()
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user")


if __name__ == '__main__':
    run()
