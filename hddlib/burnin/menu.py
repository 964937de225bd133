"""
Interactive operator menu.

Shows the drive inventory, asks for an action and drive numbers, and hands
the selection to the orchestrator.
"""

from typing import Callable

from .controller import ACTION_BOTH, ACTION_SCAN, ACTION_TRIAGE, BurnInOrchestrator
from .exceptions import EXIT_BATCH_FAILED, EXIT_OK, BurnInSelectionError
from hddlib.logger import get_module_logger

logger = get_module_logger(__name__)

MENU_ACTIONS = {
    '1': ACTION_TRIAGE,
    '2': ACTION_SCAN,
    '3': ACTION_BOTH,
}
MENU_EXIT = '4'

MENU_TEXT = """
Actions:
  1) Triage (SMART short/conveyance/long self-tests, non-destructive)
  2) Surface scan (badblocks write/verify, DESTROYS DATA)
  3) Triage then surface scan
  4) Exit
"""


class BurnInMenu:
    """
    Menu loop over a started orchestrator.

    Example:
        >>> with orchestrator.session():
        ...     exit_code = BurnInMenu(orchestrator).loop()
    """

    def __init__(
        self,
        orchestrator: BurnInOrchestrator,
        input_fn: Callable[[str], str] = input,
        output_fn: Callable[[str], None] = print,
    ):
        self.orchestrator = orchestrator
        self.input_fn = input_fn
        self.output_fn = output_fn
        self.batch_failed = False

    def run_once(self, action: str, answer: str) -> bool:
        """
        Select drives by number and run one action.

        Raises:
            BurnInSelectionError: If the drive numbers are invalid
        """
        entries = self.orchestrator.inventory.scan()
        drives = self.orchestrator.inventory.select(entries, answer)
        failed = self.orchestrator.run_action(action, drives)
        self.batch_failed = self.batch_failed or bool(failed)
        return bool(failed)

    def loop(self) -> int:
        """Run until the operator exits; returns the process exit code."""
        while True:
            entries = self.orchestrator.inventory.scan()
            self.output_fn('')
            self.output_fn(self.orchestrator.inventory.format_table(entries))
            self.output_fn(MENU_TEXT)

            choice = self.input_fn('Select action [1-4]: ').strip()
            if choice == MENU_EXIT:
                break
            action = MENU_ACTIONS.get(choice)
            if action is None:
                self.output_fn(f"Invalid choice: {choice}")
                continue

            answer = self.input_fn('Drive numbers (space separated): ')
            try:
                drives = self.orchestrator.inventory.select(entries, answer)
            except BurnInSelectionError as e:
                self.output_fn(str(e))
                continue

            if self.orchestrator.run_action(action, drives):
                self.batch_failed = True
                self.output_fn('[!] Surface scan batch has failed drives; see summary')

        return EXIT_BATCH_FAILED if self.batch_failed else EXIT_OK
