import sys
import logging

from fatpack.console import execute_command
from fatpack.errors import FatpackError
from fatpack.log import setup_logging

log = logging.getLogger("console")


def main() -> None:
    """The main entry point for the fatpack console."""
    setup_logging(logging.INFO)

    if len(sys.argv) < 2:
        execute_command("help", [])
        sys.exit(1)

    command, args = sys.argv[1].lower(), sys.argv[2:]
    try:
        code = execute_command(command, args)
    except FatpackError as e:
        log.critical(f"{e}")
        sys.exit(1)
    except KeyboardInterrupt:
        log.warning("Interrupted.")
        sys.exit(130)
    except Exception as e:
        log.error(f"An unexpected error occurred: {e}", exc_info=True)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
