"""
Service provisioning: tear down any existing instance, then install and configure it afresh.

Services are handled one at a time in the order they're declared.  A failure only abandons the
remaining steps for that service, and is reported in its `Outcome` without affecting the rest.
"""

from contextlib import contextmanager
import errno
import logging
import os
from typing import Any, Callable, Dict, Iterator, List, NamedTuple, Optional

from ..config import Config, effective_options, EffectiveOptions, Service
from ..plumbing import nssm
from ..plumbing.common import (causes, Collect, CommandError, log_chain, poll_until, PollTimeout,
                               Result)
from ..plumbing.nssm import LifecycleState, Nssm


LOG = logging.getLogger(__name__)


class ServiceError(Exception):
    """
    A step of a service's setup failed, and the remaining steps were abandoned.

    The underlying failure is available as `__cause__`.
    """


class Outcome(NamedTuple):
    """
    Final result of handling a single service: either a `Result` tree, or the error that stopped it.
    """

    name: str
    result: Optional[Result[Any]] = None
    error: Optional[ServiceError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def causes(self) -> List[str]:
        """
        Messages of the failure and everything that led to it, outermost first.
        """
        return causes(self.error) if self.error else []


# Failures of individual steps that abandon the current service.
_STEP_ERRORS = (CommandError, PollTimeout, OSError, ValueError)


@contextmanager
def _step(message: str) -> Iterator[None]:
    try:
        yield
    except _STEP_ERRORS as ex:
        raise ServiceError(message) from ex


@contextmanager
def _tolerate(message: str) -> Iterator[None]:
    # NSSM may fail a control request that still takes effect, e.g. "Unexpected status
    # SERVICE_STOP_PENDING in response to STOP control", so only warn and let the poll decide.
    try:
        yield
    except CommandError as ex:
        warning = ServiceError(message)
        warning.__cause__ = ex
        log_chain(LOG, logging.WARNING, warning, "WARNING")


def canonical_path(path: str) -> str:
    """
    Resolve a path to an absolute one without symlinks, which must exist.
    """
    real = os.path.realpath(path)
    if not os.path.exists(real):
        raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), path)
    return real


def get_state(tool: Nssm, name: str) -> LifecycleState:
    """
    Query a service's current state, assuming that it doesn't exist if NSSM can't report a
    recognised one.
    """
    try:
        return nssm.get_status(tool, name)
    except (CommandError, ValueError) as ex:
        LOG.debug("No status for service %r, assuming it doesn't exist: %s", name, ex)
        return LifecycleState.not_present


def _wait_for(tool: Nssm, name: str, target: LifecycleState, interval: float,
              count: int) -> Result[int]:
    return poll_until(lambda: nssm.get_status(tool, name), target, interval, count,
                      label="service '{}' to reach {}".format(name, target))


@Result.collect
def stop_and_wait(tool: Nssm, config: Config, name: str) -> Collect[None]:
    """
    Stop a service, and wait until it has fully stopped.
    """
    with _tolerate("unable to stop service '{}', waiting for it anyway".format(name)):
        yield nssm.stop(tool, name)
    with _step("unable to wait for service '{}' to stop".format(name)):
        yield _wait_for(tool, name, LifecycleState.stopped, config.stop_poll.interval,
                        config.stop_poll.count)


@Result.collect
def start_and_wait(tool: Nssm, config: Config, name: str) -> Collect[None]:
    """
    Start a service, and wait until it is running.
    """
    with _tolerate("unable to start service '{}', waiting for it anyway".format(name)):
        yield nssm.start(tool, name)
    with _step("unable to wait for service '{}' to start".format(name)):
        yield _wait_for(tool, name, LifecycleState.running, config.start_poll.interval,
                        config.start_poll.count)


@Result.collect
def reconcile_service(tool: Nssm, config: Config, service: Service) -> Collect[EffectiveOptions]:
    """
    Replace any existing instance of a service with a freshly installed and configured one,
    optionally starting it.

    Raises `ServiceError` on the first step that fails.
    """
    name = service.name
    LOG.info("Creating service %r...", name)
    state = get_state(tool, name)
    if state is not LifecycleState.not_present:
        LOG.debug("Service %r exists, removing service...", name)
        if state is not LifecycleState.stopped:
            yield stop_and_wait(tool, config, name)
        with _step("unable to remove service '{}'".format(name)):
            yield nssm.remove(tool, name)
    # NSSM resolves relative paths from its own location, not ours.
    with _step("unable to canonicalize path '{}' for service '{}'".format(service.path, name)):
        path = canonical_path(service.path)
    with _step("unable to install service '{}'".format(name)):
        yield nssm.install(tool, name, path)
    if service.startup_dir is not None:
        with _step("unable to canonicalize startup directory path '{}' for service '{}'"
                   .format(service.startup_dir, name)):
            startup_dir = canonical_path(service.startup_dir)
        with _step("unable to set startup directory for service '{}'".format(name)):
            yield nssm.set_param(tool, name, "AppDirectory", startup_dir)
    for param, value in (("AppParameters", service.args), ("Description", service.description)):
        if value is not None:
            with _step("unable to set '{}' for service '{}'".format(param, name)):
                yield nssm.set_param(tool, name, param, value)
    options = effective_options(service, config)
    if options.deps is not None:
        with _step("unable to set 'DependOnService' for service '{}'".format(name)):
            # One argument per service name.
            yield nssm.set_param(tool, name, "DependOnService", *options.deps.split())
    if options.account is not None:
        with _step("unable to set the username and password for service '{}'".format(name)):
            yield nssm.set_account(tool, name, options.account.user, options.account.password)
    if options.start_on_create:
        yield start_and_wait(tool, config, name)
    return options


@Result.collect
def stop_service(tool: Nssm, config: Config, service: Service) -> Collect[None]:
    """
    Stop a service if it exists and isn't already stopped, and wait until it has stopped.
    """
    name = service.name
    LOG.info("Stopping service %r...", name)
    state = get_state(tool, name)
    if state is LifecycleState.not_present:
        LOG.info("Service %r doesn't exist, nothing to stop", name)
        return
    elif state is LifecycleState.stopped:
        LOG.debug("Service %r is already stopped", name)
        return
    yield stop_and_wait(tool, config, name)


def _run_all(task: Callable[[Nssm, Config, Service], Result[Any]], tool: Nssm,
             config: Config) -> Dict[str, Outcome]:
    outcomes: Dict[str, Outcome] = {}
    for service in config.services:
        try:
            result = task(tool, config, service)
        except ServiceError as ex:
            LOG.error("Service %r [FAILED]", service.name)
            log_chain(LOG, logging.ERROR, ex)
            outcomes[service.name] = Outcome(service.name, error=ex)
        else:
            LOG.info("Service %r [OK]", service.name)
            LOG.debug("%s", result)
            outcomes[service.name] = Outcome(service.name, result=result)
    return outcomes


def reconcile_all(tool: Nssm, config: Config) -> Dict[str, Outcome]:
    """
    Reconcile every declared service in order, collecting an `Outcome` for each.

    Dependencies between services are only passed on to NSSM, and don't affect the order here.
    """
    return _run_all(reconcile_service, tool, config)


def stop_all(tool: Nssm, config: Config) -> Dict[str, Outcome]:
    """
    Stop every declared service in order, collecting an `Outcome` for each.
    """
    return _run_all(stop_service, tool, config)
