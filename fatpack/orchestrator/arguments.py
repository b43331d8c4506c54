import logging
from pathlib import Path
from typing import List, Optional

from fatpack.config import effective_settings as config
from fatpack.project import LaunchDescriptor

log = logging.getLogger(__name__)


def redeploy_patterns(descriptor: LaunchDescriptor) -> List[str]:
    """
    Returns the file patterns that trigger a redeploy.

    Caller-supplied patterns are used verbatim. An empty or absent list falls
    back to the default source pattern under the project's base directory.
    """
    if descriptor.redeploy_patterns:
        return list(descriptor.redeploy_patterns)
    return [str(Path(descriptor.base_directory) / config.REDEPLOY_DEFAULT_PATTERN)]


def build_arguments(descriptor: LaunchDescriptor, command: str = config.LAUNCHER_COMMAND_RUN,
                    pid: Optional[int] = None, config_path: Optional[Path] = None) -> List[str]:
    """
    Builds the argument vector passed to the launcher.

    The order is: command, application unit (not for stop), launcher class,
    redeploy patterns and configuration file (run only), then the process id
    for stop invocations.

    :param descriptor: The launch descriptor.
    :param command: `run` or `stop`.
    :param pid: The process to stop, appended for stop invocations.
    :param config_path: The resolved configuration file; defaults to the descriptor's.
    :return: The argument list.
    """
    is_stop = command == config.LAUNCHER_COMMAND_STOP
    args = [command]

    if descriptor.application_unit and not is_stop:
        args.append(descriptor.application_unit)

    args.extend([config.LAUNCHER_ARG_CLASS, descriptor.launcher])

    if not is_stop:
        if descriptor.redeploy:
            log.info("Application redeploy enabled")
            args.append(f"{config.LAUNCHER_ARG_REDEPLOY}={','.join(redeploy_patterns(descriptor))}")

        conf = config_path or descriptor.config_path
        if conf is not None and Path(conf).is_file():
            log.info(f"Using configuration from file: {conf}")
            args.extend([config.LAUNCHER_ARG_CONF, str(conf)])

    if is_stop and pid is not None:
        args.append(str(pid))

    return args
