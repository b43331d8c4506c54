from .orchestrator import LaunchState, ProcessOrchestrator
from .inline import launchers, register_launcher, run_inline

__all__ = ["LaunchState", "ProcessOrchestrator", "launchers", "register_launcher", "run_inline"]
