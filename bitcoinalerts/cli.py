"""Command-line interface for bitcoin-alerts."""

import sys
import json
import argparse
import logging
from .config import Config
from .errors import FatalError
from .service import AlertService
from .logging import setup_logging, get_logger

logger = get_logger(__name__)


def main():
    """Main CLI entrypoint."""
    parser = argparse.ArgumentParser(
        description="Watch a Bitcoin node for chain events (halvings, difficulty "
                    "adjustments, supply and block milestones, hashrate records) "
                    "and notify them over ntfy, Nostr and Matrix."
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to config.yaml (default: search for config.yaml)"
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Process at most one block and drain the queue once, then exit (cron-friendly)"
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Verbose output (for --once mode)"
    )
    parser.add_argument(
        "--skip-sync-check",
        action="store_true",
        help="Do not wait for the node to finish initial block download"
    )

    args = parser.parse_args()

    try:
        config = Config(args.config)
    except FileNotFoundError as e:
        # Initialize basic logging before setup_logging for error reporting
        logging.basicConfig(level=logging.ERROR, format='[%(levelname)s] %(message)s')
        logger.error(f"Config file not found: {e}")
        sys.exit(1)
    except Exception as e:
        logging.basicConfig(level=logging.ERROR, format='[%(levelname)s] %(message)s')
        logger.error(f"Error loading config: {e}")
        sys.exit(1)

    # Initialize logging system after config is loaded
    setup_logging(config)
    logger.info(f"Starting bitcoin-alerts on {config.network} ({config.rpc_url})")

    service = AlertService(config)

    if args.once:
        try:
            output = service.run_once()
            if args.verbose:
                print(json.dumps(output, indent=2))
            else:
                print(json.dumps(output))
            logger.debug(f"One-shot run completed: {json.dumps(output)}")
        except Exception as e:
            logger.error(f"Error in one-shot run: {e}", exc_info=True)
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
        finally:
            service.close()
        return

    # Continuous mode: processor and dispatchers in parallel threads
    try:
        service.start(skip_sync_check=args.skip_sync_check)
        exit_code = service.wait()
    except FatalError as e:
        logger.critical(f"{e}")
        exit_code = 1
    except KeyboardInterrupt:
        logger.info("Shutting down bitcoin-alerts...")
        exit_code = 0
    finally:
        service.close()

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
