import logging
from typing import List

from fatpack.console.handler import (
    display_status, handle_check_config_command, handle_package_command, handle_run_command,
    handle_start_command, handle_stop_command, parse_options, print_help, toggle_verbose_logging,
)

log = logging.getLogger(__name__)


def execute_command(command: str, args: List[str]) -> int:
    """
    Executes a single console command.

    :param command: The main command string (e.g., 'package', 'run').
    :param args: A list of arguments for the command.
    :return int: The exit status of the command.
    :raises FatpackError: If the command fails.
    """
    log.debug(f"Executing command: {command}, args: {args}")
    if "--verbose" in args:
        args = [a for a in args if a != "--verbose"]
        toggle_verbose_logging()

    options = parse_options(args)
    command_map = {
        "package": lambda: handle_package_command(options),
        "run": lambda: handle_run_command(options),
        "start": lambda: handle_start_command(options),
        "stop": lambda: handle_stop_command(options),
        "status": lambda: display_status(options),
        "check-config": lambda: handle_check_config_command(options),
        "help": print_help,
    }

    if command not in command_map:
        log.info(f"Unknown command: '{command}'. Type 'help' for a list of commands.")
        return 1
    return command_map[command]()
