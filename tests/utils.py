"""
In-memory stand-in for the NSSM executable, used in place of the command runner:

    fake = FakeNssm({"Foo": LifecycleState.running}, stop_polls=1)
    with fake.patch():
        services.reconcile_service(TOOL, config, service)
    fake.calls  # [["status", "Foo"], ["stop", "Foo"], ...]

Pending transitions (after `stop` or `start`) are reported by `stop_polls` or `start_polls` status
queries before settling, or forever if set to `None`.
"""

from typing import Dict, List, Mapping, NamedTuple, Optional, Sequence

from unittest.mock import patch

from nssmexec.config import Service
from nssmexec.plumbing.common import Arg, NonZeroExit, Output
from nssmexec.plumbing.nssm import LifecycleState, Nssm


TOOL = Nssm("nssm.exe")


def declare(name: str, path: str, **kwargs) -> Service:
    return Service(name=name, path=path, **kwargs)


class FakeService:

    def __init__(self, state: LifecycleState = LifecycleState.stopped):
        self.state = state
        self.params: Dict[str, List[str]] = {}
        self._settle: Optional[LifecycleState] = None
        self._remaining: Optional[int] = None

    def begin(self, pending: LifecycleState, settle: LifecycleState, polls: Optional[int]):
        if polls == 0:
            self.state = settle
            self._settle = None
        else:
            self.state = pending
            self._settle = settle
            self._remaining = polls

    def query(self) -> LifecycleState:
        if self._settle is not None and self._remaining is not None:
            if self._remaining > 0:
                self._remaining -= 1
            else:
                self.state = self._settle
                self._settle = None
        return self.state


class _Rule(NamedTuple):
    prefix: List[str]
    apply: bool


class FakeNssm:

    def __init__(self, services: Optional[Mapping[str, LifecycleState]] = None,
                 stop_polls: Optional[int] = 0, start_polls: Optional[int] = 0):
        self.services = {name: FakeService(state) for name, state in (services or {}).items()}
        self.stop_polls = stop_polls
        self.start_polls = start_polls
        self.calls: List[List[str]] = []
        self.raw: List[List[Arg]] = []
        self._rules: List[List] = []
        # Status output to report verbatim in place of a service's state.
        self.status_text: Dict[str, str] = {}

    def fail(self, *prefix: str, times: int = 1, apply: bool = False) -> None:
        """
        Make the next `times` commands starting with `prefix` exit with an error.  With `apply`,
        the command still takes effect, like NSSM's spurious errors for pending controls.
        """
        self._rules.append([_Rule(list(prefix), apply), times])

    def patch(self):
        return patch("nssmexec.plumbing.nssm.command", self)

    def count(self, *prefix: str) -> int:
        return sum(1 for call in self.calls if call[:len(prefix)] == list(prefix))

    def __call__(self, args: Sequence[Arg]) -> Output:
        self.raw.append(list(args))
        argv = [str(arg) for arg in args[1:]]
        self.calls.append(argv)
        for rule in self._rules:
            spec, remaining = rule
            if remaining and argv[:len(spec.prefix)] == spec.prefix:
                rule[1] -= 1
                if spec.apply:
                    self._apply(args, argv)
                raise NonZeroExit(args, 1, "", "Simulated failure")
        return Output(list(args), self._apply(args, argv), "")

    def _apply(self, args: Sequence[Arg], argv: List[str]) -> str:
        verb, name, *rest = argv
        if verb == "status" and name in self.status_text:
            return self.status_text[name]
        if verb == "install":
            if name in self.services:
                raise NonZeroExit(args, 1, "", "Error creating service!")
            service = FakeService()
            service.params["Application"] = rest
            self.services[name] = service
            return "Service \"{}\" installed successfully!".format(name)
        try:
            service = self.services[name]
        except KeyError:
            raise NonZeroExit(args, 3, "", "Can't open service!")
        if verb == "status":
            # NSSM output arrives with Windows line endings.
            return "{}\r\n".format(service.query())
        elif verb == "stop":
            service.begin(LifecycleState.stop_pending, LifecycleState.stopped, self.stop_polls)
        elif verb == "start":
            service.begin(LifecycleState.start_pending, LifecycleState.running, self.start_polls)
        elif verb == "remove":
            if rest != ["confirm"]:
                raise NonZeroExit(args, 1, "", "Confirmation required")
            del self.services[name]
        elif verb == "set":
            param, *values = rest
            service.params[param] = values
        else:
            raise NonZeroExit(args, 1, "", "Unknown command {}".format(verb))
        return ""
