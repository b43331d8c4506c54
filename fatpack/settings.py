"""
This module contains the default configuration settings for fatpack.
It defines archive layout constants, launcher argument names, process timeouts,
repository locations and logging defaults. Values read from the environment can
be overridden through a `.env` file in the current working directory.
"""

import os
import sys
import pathlib
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv(override=True)

#* --- Core Paths ---
BASE_DIR = pathlib.Path.cwd()
PROJECT_FILE_NAME = "fatpack.yaml"
OVERRIDES_JSON_PATH = pathlib.Path(os.getenv("FATPACK_OVERRIDES", str(BASE_DIR / "fatpack-overrides.json")))

#* --- Archive Layout ---
FAT_ARCHIVE_SUFFIX = "-fat"
FAT_ARCHIVE_EXTENSION = "pyz"
MANIFEST_PATH = "META-INF/MANIFEST.MF"
MANIFEST_VERSION = "1.0"
MANIFEST_MAIN_ENTRYPOINT = "Main-Entrypoint"
MANIFEST_MAIN_APPLICATION_UNIT = "Main-Application-Unit"
SERVICES_PREFIX = "META-INF/services/"
ARCHIVE_MAIN_MODULE = "__main__.py"
# Fixed zip timestamp so identical inputs export byte-identical archives.
ARCHIVE_ENTRY_DATE_TIME = (1980, 1, 1, 0, 0, 0)
BACKUP_SUFFIX = ".bak"
SERVICE_RELOCATOR_MODES = {"combine"}

#* --- Dependency Resolution ---
RESOLVABLE_SCOPES = {"compile", "runtime"}
DEFAULT_DEPENDENCY_TYPE = "whl"
LOCAL_REPOSITORY = pathlib.Path(os.getenv("FATPACK_REPOSITORY", str(pathlib.Path.home() / ".fatpack" / "repository")))
REMOTE_REPOSITORIES = [u for u in os.getenv("FATPACK_REMOTE_REPOSITORIES", "").split(",") if u]
DOWNLOAD_TIMEOUT = 30  # seconds
DOWNLOAD_CHUNK_SIZE = 8192

#* --- Launcher Settings ---
DEFAULT_LAUNCHER = "fatpack.launcher:main"
DEFAULT_UNIT_CALLABLE = "main"
LAUNCHER_COMMAND_RUN = "run"
LAUNCHER_COMMAND_STOP = "stop"
LAUNCHER_ARG_CLASS = "--launcher-class"
LAUNCHER_ARG_REDEPLOY = "--redeploy"
LAUNCHER_ARG_CONF = "--conf"
BOOTSTRAP_MODULE = "fatpack.bootstrap"
BOOTSTRAP_ARG_CLASSPATH = "--classpath"
REDEPLOY_DEFAULT_PATTERN = "src/**/*.py"
REDEPLOY_DEBOUNCE_SECONDS = 1.0

#* --- Configuration Discovery ---
CONFIG_DIR_NAME = "conf"
CONFIG_FILE_PATTERNS = ("*.json", "*.yml", "*.yaml")
CONFIG_FILE_JSON = "application.json"

#* --- Python Executable Configuration ---
# The forked child runs on the same interpreter that packaged the application.
PYTHON_EXECUTABLE = os.getenv("PYTHON_EXECUTABLE", sys.executable)

#* --- Process Settings ---
PID_FILE_NAME = "fatpack-start-process.id"
START_LOG_FILE_NAME = "fatpack-start.log"
PROCESS_START_GRACE_TIMEOUT = float(os.getenv("FATPACK_START_GRACE_TIMEOUT", "3"))  # seconds
PROCESS_STOP_GRACE_TIMEOUT = 10  # seconds before force-killing
STOP_TIMEOUT = int(os.getenv("FATPACK_STOP_TIMEOUT", "10"))
SIGINT_DEBOUNCE_SECONDS = 0.5
PROCESS_TITLE_PREFIX = "fatpack - "

#* --- Logging ---
LOG_FORMAT = '%(asctime)s - %(levelname)-8s - [%(name)s] - %(message)s'
LOG_FILE_PATH = os.getenv("FATPACK_LOG_FILE", "")
VERBOSE_LOGGING = False

#* --- MODIFIABLE SETTINGS (Changeable through fatpack-overrides.json) ---
MODIFIABLE_SETTINGS = {
    "LOCAL_REPOSITORY", "REMOTE_REPOSITORIES",
    "PROCESS_START_GRACE_TIMEOUT", "PROCESS_STOP_GRACE_TIMEOUT", "STOP_TIMEOUT",
    "REDEPLOY_DEFAULT_PATTERN", "LOG_FILE_PATH", "VERBOSE_LOGGING",
}
