"""
Entry point of a forked application process.

Usage: python -m fatpack.bootstrap --classpath <entries> <launcher> [launcher args...]

It puts the classpath entries in front of `sys.path`, names the process,
resolves the launcher and hands it the remaining arguments.
"""
import os
import sys
import logging
import setproctitle
from typing import List, Optional

from fatpack.config import effective_settings as config
from fatpack.errors import LaunchError
from fatpack.log import setup_logging
from fatpack.orchestrator.inline import launchers

log = logging.getLogger(__name__)


def parse_arguments(argv: List[str]):
    """Splits the bootstrap argument vector into classpath, launcher and launcher args."""
    args = list(argv)
    classpath: List[str] = []
    if args and args[0] == config.BOOTSTRAP_ARG_CLASSPATH:
        if len(args) < 2:
            raise LaunchError(f"Missing value for {config.BOOTSTRAP_ARG_CLASSPATH}")
        classpath = [entry for entry in args[1].split(os.pathsep) if entry]
        args = args[2:]
    if not args:
        raise LaunchError("No launcher given to the bootstrap.")
    return classpath, args[0], args[1:]


def main(argv: Optional[List[str]] = None) -> int:
    setup_logging(logging.DEBUG if config.VERBOSE_LOGGING else logging.INFO)
    try:
        classpath, launcher_spec, launcher_args = parse_arguments(sys.argv[1:] if argv is None else argv)
        unit = launcher_args[1] if len(launcher_args) > 1 and not launcher_args[1].startswith("-") else launcher_spec
        setproctitle.setproctitle(f"{config.PROCESS_TITLE_PREFIX}{unit}")

        sys.path[:0] = [entry for entry in classpath if entry not in sys.path]
        launcher = launchers.resolve(launcher_spec)
        result = launcher(launcher_args)
    except LaunchError as e:
        log.critical(f"{e}")
        return 1
    except KeyboardInterrupt:
        log.info("Interrupted, exiting.")
        return 130
    return result if isinstance(result, int) else 0


if __name__ == "__main__":
    sys.exit(main())
