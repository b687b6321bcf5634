"""
Scripts to provision services.
"""

from typing import Dict

from .utils import entrypoint, error
from ..config import Config
from ..plumbing.nssm import Nssm
from ..tasks import services


def _report(outcomes: Dict[str, services.Outcome]):
    failed = [name for name, outcome in outcomes.items() if not outcome.ok]
    if failed:
        error("Warning: {} of {} service(s) failed: {}"
              .format(len(failed), len(outcomes), ", ".join(failed)))


@entrypoint
def install(tool: Nssm, config: Config):
    """
    Install and configure every service in the configuration, replacing any existing ones.

    Services are handled in order, and a failure only affects the service it happened to.

    Usage: {script} [--conf=PATH] [--log=PATH]

    Options:
        -c PATH --conf=PATH     TOML configuration to set up NSSM [default: config/nssm_exec.toml]
        -l PATH --log=PATH      YAML logging configuration [default: config/logging_nssm_exec.yml]
    """
    _report(services.reconcile_all(tool, config))


@entrypoint
def stop(tool: Nssm, config: Config):
    """
    Stop every service in the configuration, without removing them.

    Usage: {script} [--conf=PATH] [--log=PATH]

    Options:
        -c PATH --conf=PATH     TOML configuration to set up NSSM [default: config/nssm_exec.toml]
        -l PATH --log=PATH      YAML logging configuration [default: config/logging_nssm_exec.yml]
    """
    _report(services.stop_all(tool, config))
