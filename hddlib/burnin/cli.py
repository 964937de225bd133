"""
hdd-burnin command line entry point.

Interactive by default; ``--action`` with ``--drives`` runs a single
action without the menu.
"""

import argparse
import sys
from typing import List, Optional

from .config import BurnInConfig
from .controller import ACTIONS, BurnInOrchestrator
from .exceptions import (
    EXIT_BATCH_FAILED,
    EXIT_CONFIG_ERROR,
    EXIT_OK,
    BurnInAbort,
    BurnInConfigError,
    BurnInLockError,
    BurnInSelectionError,
    BurnInStateError,
)
from .menu import BurnInMenu


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments
    """
    parser = argparse.ArgumentParser(
        prog='hdd-burnin',
        description='Qualify used drives: SMART triage and destructive surface scan',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  # Interactive menu
  %(prog)s

  # Triage drives 1 and 2 from the inventory listing
  %(prog)s --action triage --drives "1 2"

  # Unattended surface scan of drive 3
  %(prog)s --action scan --drives 3 --confirm ERASE

Environment overrides: MAX_TEMP MAX_PHASE0 MAX_PHASEB BLOCK_SIZE
SMART_TIMEOUT BADBLOCKS_PASSES LOG_ROOT STATE_DIR LOCK_FILE BURNIN_GROUP
        '''
    )

    parser.add_argument(
        '--config', '-c',
        type=str,
        help='JSON config file with a "burnin" section'
    )
    parser.add_argument('--max-temp', type=int, help='Abort threshold in Celsius')
    parser.add_argument('--passes', type=int, help='Surface scan passes per drive')
    parser.add_argument('--block-size', type=int, help='badblocks block size in bytes')
    parser.add_argument('--state-dir', type=str, help='Directory for drives.tsv/runs.tsv')
    parser.add_argument('--log-root', type=str, help='Parent directory of per-run log dirs')

    parser.add_argument(
        '--action', '-a',
        choices=ACTIONS,
        help='Run one action non-interactively'
    )
    parser.add_argument(
        '--drives', '-d',
        type=str,
        help='Drive numbers from the inventory listing (with --action)'
    )
    parser.add_argument(
        '--confirm',
        type=str,
        default='',
        help='Confirmation token for a destructive scan (with --action)'
    )
    parser.add_argument(
        '--list',
        action='store_true',
        help='Print the drive inventory and exit'
    )

    args = parser.parse_args(argv)
    if args.action and not args.drives:
        parser.error('--action requires --drives')
    return args


def build_config(args: argparse.Namespace) -> dict:
    """
    Raises:
        BurnInConfigError: If any configuration layer is invalid
    """
    overrides = {
        'max_temp_c': args.max_temp,
        'scan_passes': args.passes,
        'block_size': args.block_size,
        'state_dir': args.state_dir,
        'log_root': args.log_root,
    }
    try:
        return BurnInConfig.resolve(json_path=args.config, overrides=overrides)
    except ValueError as e:
        raise BurnInConfigError(str(e))


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 ok, 1 scan batch failure, 2 startup error, >=128 abort)
    """
    args = parse_arguments(argv)

    try:
        config = build_config(args)
        if args.action:
            orchestrator = BurnInOrchestrator(config, confirm_fn=lambda prompt: args.confirm)
        else:
            orchestrator = BurnInOrchestrator(config)
    except BurnInConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    try:
        with orchestrator.session():
            menu = BurnInMenu(orchestrator)
            if args.list:
                print(orchestrator.inventory.format_table(orchestrator.inventory.scan()))
                exit_code = EXIT_OK
            elif args.action:
                try:
                    failed = menu.run_once(args.action, args.drives)
                except BurnInSelectionError as e:
                    # Nothing started yet; leave through the abort path
                    orchestrator.abort(f"Refusing: {e}")
                exit_code = EXIT_BATCH_FAILED if failed else EXIT_OK
            else:
                exit_code = menu.loop()
    except (BurnInConfigError, BurnInLockError, BurnInStateError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except BurnInAbort as e:
        return e.code

    return exit_code


if __name__ == '__main__':
    sys.exit(main())
