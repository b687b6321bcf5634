"""
Service management through the NSSM command-line interface.

Most methods identify services by name, which NSSM uses verbatim as the key in its service
database, and take an `Nssm` context pointing at the executable to call.
"""

from enum import Enum
import logging
from typing import NamedTuple

from .common import Arg, command, Output, Password, Result, State


LOG = logging.getLogger(__name__)


class Nssm(NamedTuple):
    """
    Location of the NSSM executable used for all commands.
    """

    path: str

    def run(self, *args: Arg) -> Output:
        return command([self.path, *args])


class LifecycleState(Enum):
    """
    Run states of a service, valued by the status names NSSM reports.
    """

    not_present = "NOT_PRESENT"
    """
    The service is unknown to NSSM, or its status could not be read.  Never reported by NSSM.
    """
    stopped = "SERVICE_STOPPED"
    start_pending = "SERVICE_START_PENDING"
    running = "SERVICE_RUNNING"
    stop_pending = "SERVICE_STOP_PENDING"
    pause_pending = "SERVICE_PAUSE_PENDING"
    paused = "SERVICE_PAUSED"
    continue_pending = "SERVICE_CONTINUE_PENDING"

    def __str__(self):
        return self.value


_STATUSES = {state.value: state for state in LifecycleState
             if state is not LifecycleState.not_present}


class UnknownStatus(ValueError):
    """
    NSSM reported a status that doesn't correspond to any `LifecycleState`.
    """

    def __init__(self, token: str):
        super().__init__("Unable to obtain valid state from status string {!r}".format(token))
        self.token = token


def parse_status(token: str) -> LifecycleState:
    """
    Map a status name printed by NSSM to its state, ignoring surrounding whitespace.
    """
    try:
        return _STATUSES[token.strip()]
    except KeyError:
        raise UnknownStatus(token.strip()) from None


def get_status(tool: Nssm, name: str) -> LifecycleState:
    """
    Query the current state of an installed service.

    Raises `CommandError` if NSSM fails, e.g. because the service doesn't exist.
    """
    state = parse_status(tool.run("status", name).stdout)
    LOG.debug("Service %r is in state %s", name, state)
    return state


def stop(tool: Nssm, name: str) -> Result[None]:
    """
    Ask a service to stop.  The stop may still be pending when this returns.
    """
    tool.run("stop", name)
    return Result(State.success)


def start(tool: Nssm, name: str) -> Result[None]:
    """
    Ask a service to start.  The start may still be pending when this returns.
    """
    tool.run("start", name)
    return Result(State.success)


def remove(tool: Nssm, name: str) -> Result[None]:
    """
    Delete a service without prompting for confirmation.
    """
    tool.run("remove", name, "confirm")
    return Result(State.success)


def install(tool: Nssm, name: str, path: str) -> Result[None]:
    """
    Register a new service running the given executable.

    NSSM resolves relative paths against its own location, so `path` should be absolute.
    """
    tool.run("install", name, path)
    return Result(State.created)


def set_param(tool: Nssm, name: str, param: str, *values: Arg) -> Result[None]:
    """
    Update a single service parameter, e.g. `AppDirectory` or `Description`.
    """
    tool.run("set", name, param, *values)
    return Result(State.success)


def set_account(tool: Nssm, name: str, user: str, password: str) -> Result[None]:
    """
    Run the service as the given user.

    The password is always passed, as an empty argument if the account doesn't need one.
    """
    return set_param(tool, name, "ObjectName", user, Password(password))
