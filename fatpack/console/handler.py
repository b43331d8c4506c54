import psutil
import logging
import dataclasses
from pathlib import Path
from typing import Any, Dict, List

from fatpack.config import effective_settings as config
from fatpack.dependencies import LocalRepository, classpath, split_direct_and_transitive
from fatpack.errors import NotRunningError, PreconditionError
from fatpack.orchestrator import ProcessOrchestrator, persistence
from fatpack.orchestrator.config_utils import check_configuration
from fatpack.packaging import AssemblyRequest, assemble, relocate_service_interfaces
from fatpack.project import ProjectModel, load_project

log = logging.getLogger(__name__)


def parse_options(args: List[str]) -> Dict[str, Any]:
    """
    Parses the options shared by all commands.

    :param args: The arguments following the command.
    :return: A dict with `project`, `fork`, `redeploy` and `timeout` keys.
    :raises PreconditionError: If an option is missing its value or the value is invalid.
    """
    options: Dict[str, Any] = {
        "project": Path.cwd() / config.PROJECT_FILE_NAME,
        "fork": None,
        "redeploy": None,
        "timeout": config.STOP_TIMEOUT,
    }
    remaining = list(args)
    while remaining:
        arg = remaining.pop(0)
        if arg in ("--project", "--timeout"):
            if not remaining:
                raise PreconditionError(f"Missing value for {arg}")
            value = remaining.pop(0)
            if arg == "--project":
                options["project"] = Path(value)
            else:
                try:
                    options["timeout"] = float(value)
                except ValueError as e:
                    raise PreconditionError(f"Invalid timeout '{value}'") from e
        elif arg == "--fork":
            options["fork"] = True
        elif arg == "--redeploy":
            options["redeploy"] = True
        else:
            log.warning(f"Ignoring unknown option '{arg}'")
    return options


def _project(options: Dict[str, Any]) -> ProjectModel:
    project = load_project(options["project"])
    overrides = {key: options[key] for key in ("fork", "redeploy") if options.get(key) is not None}
    if overrides:
        project = dataclasses.replace(project, launch=dataclasses.replace(project.launch, **overrides))
    return project


def _resolve_dependencies(project: ProjectModel):
    repository = LocalRepository(project.repository, project.remote_repositories or None)
    return split_direct_and_transitive(project.dependencies, repository)


def _orchestrator(project: ProjectModel) -> ProcessOrchestrator:
    direct, transitive = _resolve_dependencies(project)
    entries = classpath(project.output_directory, project.resource_directories, direct, transitive)
    return ProcessOrchestrator(project.launch, entries, project.build_directory)


#* --- Commands ---
def handle_package_command(options: Dict[str, Any]) -> int:
    """Resolves the dependencies, assembles the fat archive and merges service registries."""
    project = _project(options)
    if project.primary_artifact is None:
        raise PreconditionError("The project does not define a 'primary_artifact'.")

    direct, transitive = _resolve_dependencies(project)
    log.info(f"Packaging {project.name} with {len(direct)} direct and {len(transitive)} transitive dependencies")
    request = AssemblyRequest(
        primary_artifact=project.primary_artifact,
        output_directory=project.build_directory,
        base_name=project.base_name,
        launch=project.launch,
        direct_dependencies=tuple(direct),
        transitive_dependencies=tuple(transitive),
    )
    target = assemble(request)
    relocate_service_interfaces(
        project.service_relocator, project.primary_artifact, [*direct, *transitive], target, project.build_directory,
    )
    print(f"Fat archive created: {target}")
    return 0


def handle_run_command(options: Dict[str, Any]) -> int:
    """Runs the application in the foreground and returns its exit code."""
    return _orchestrator(_project(options)).run()


def handle_start_command(options: Dict[str, Any]) -> int:
    """Starts the application in the background."""
    project = _project(options)
    pid = _orchestrator(dataclasses.replace(project, launch=dataclasses.replace(project.launch, fork=True))).start()
    print(f"Application started with PID {pid}.")
    return 0


def handle_stop_command(options: Dict[str, Any]) -> int:
    """Stops the application started in the project's working directory."""
    project = _project(options)
    pid = ProcessOrchestrator(project.launch).stop(options["timeout"])
    print(f"Application with PID {pid} stopped.")
    return 0


def display_status(options: Dict[str, Any]) -> int:
    """Checks and displays the status of the started application, including resource usage."""
    project = _project(options)
    work_dir = project.launch.work_directory
    try:
        pid = persistence.read_pid_file(work_dir)
    except NotRunningError:
        print("\nApplication is STOPPED (No PID file found).\n")
        return 0

    print("\n--- Application Status ---")
    try:
        p = psutil.Process(pid)
        cpu = p.cpu_percent(interval=0.1)
        mem = p.memory_info().rss
        print(f"  - {p.name() + ' (' + project.name + ')':<32} : PID {pid:<8} | Status: {p.status().upper()} | CPU: {cpu:.1f}% | MEM: {mem/1024/1024:.1f} MB")
    except psutil.NoSuchProcess:
        print(f"  - {project.name:<25} : PID {pid:<8} | Status: STOPPED (Stale PID)")
        print("\nWARNING: The process is stopped but a stale PID file exists.")
        print("You should run 'stop' to clean it up before starting again.")
    except psutil.AccessDenied:
        print(f"  - {project.name:<25} : PID {pid:<8} | Status: RUNNING (Access Denied)")
    print("-" * 26 + "\n")
    return 0


def handle_check_config_command(options: Dict[str, Any]) -> int:
    """Validates the paths named by the project descriptor."""
    return 0 if check_configuration(_project(options)) else 1


def toggle_verbose_logging() -> None:
    """Toggles verbose (DEBUG level) logging for the console handler."""
    config.VERBOSE_LOGGING = not config.VERBOSE_LOGGING
    new_level = logging.DEBUG if config.VERBOSE_LOGGING else logging.INFO

    # Reconfigure the console handler's level directly
    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        if type(handler) is logging.StreamHandler:
            handler.setLevel(new_level)
            break
    status = "ON" if config.VERBOSE_LOGGING else "OFF"
    log.info(f"Verbose console logging is now {status}.")


def print_help() -> int:
    """Prints the main help text for the console."""
    print("\nUsage: fatpack <command> [--project fatpack.yaml] [--verbose] [options]")
    print("\nAvailable commands:")
    print("  package                - Resolve dependencies and build the fat archive.")
    print("  run [--fork] [--redeploy]")
    print("                         - Run the application in the foreground.")
    print("  start                  - Start the application in the background.")
    print("  stop [--timeout N]     - Stop the background application.")
    print("  status                 - Show whether the background application is running.")
    print("  check-config           - Validate the paths named in the project file.")
    print("  help                   - Show this help message.")
    print()
    return 0
