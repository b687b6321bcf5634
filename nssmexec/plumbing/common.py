"""
Shared helper methods and base classes.
"""

from enum import Enum
from functools import wraps
import inspect
import logging
import subprocess
import time
from typing import (Any, Callable, Generator, Generic, Iterable, List, NamedTuple, Optional,
                    Sequence, Tuple, Type, TypeVar, Union)


LOG = logging.getLogger(__name__)

T = TypeVar("T")

Collect = Generator["Result[Any]", None, T]
"""
Generic type for the return value of functions using `Result.collect`.
"""


class Unset:
    """
    Constructor of generic default values for optional but nullable parameters.
    """

    def __repr__(self):
        return "UNSET"


UNSET = Unset()
"""
Global generic default value.
"""


class State(Enum):
    """
    Enumeration used by `Result` to declare whether the action happened.
    """

    unchanged = 0
    """
    No action required, the request and current state are consistent.
    """
    success = 1
    """
    The action was completed without issues.
    """
    created = 2
    """
    The action resulted in the creation of a new service.
    """

    def __bool__(self):
        return bool(self.value)


class Result(Generic[T]):
    """
    State and optional accompanying value from a unit of work.

    For a simple plumbing action, just create a new result directly with the resulting `State` and
    a value if relevant:

        def unit():
            # Call the service manager etc.
            return Result(State.success, True)

    For a task that combines multiple results, see `Result.collect`.  The state of such a result is
    based on all of its parts -- if any changes were made, the outer result also reports a change.

    A result can be checked for truthiness, which is `False` if no changes were made.

    A result can also be converted to a string, which produces a tree-like summary of changes:

        module:task success True
            module:unit1 unchanged
            module:unit2 success
    """

    @classmethod
    def collect(cls, fn: Callable[..., Collect[T]]) -> Callable[..., "Result[T]"]:
        """
        Decorator: build a `Result` from multiple sub-tasks:

            def plumb_b() -> Result[str]: ...

            @Result.collect
            def task() -> Collect[str]:
                yield plumb_a()
                result = yield from plumb_b()
                if result:
                    yield plumb_c()
                return result.value

        The inner function this decorator wraps should be a generator of `Result` objects.

        The return value of the wrapper function will be a new `Result` object, whose `parts` will
        be those collected sub-task results, and whose `value` will be set to the return value of
        the inner function (i.e. the example above will return a `Result[str]`).

        Exceptions raised by the generator propagate to the caller, and no result is produced.
        """
        @wraps(fn)
        def inner(*args: Any, **kwargs: Any) -> Result[T]:
            state = None
            value = None
            parts: List[Result[Any]] = []
            gen = fn(*args, **kwargs)
            try:
                while True:
                    result = next(gen)
                    parts.append(result)
            except StopIteration as ex:
                value = ex.value
            return cls(state, value, parts, fn)
        return inner

    def __init__(self, state: Optional[State] = None, value: Union[T, Unset] = UNSET,
                 parts: Iterable["Result[Any]"] = (), caller: Optional[Callable[..., Any]] = None):
        self._state = state
        self._value = value
        self.parts = tuple(parts)
        self.caller = "<unknown>"
        # Inspection magic to log the calling method, e.g. `module.sub:Class.method`.
        name = None
        if not caller:
            frame = inspect.currentframe()
            try:
                name = frame.f_back.f_code.co_name
                caller = frame.f_back.f_globals[name]
            except (AttributeError, KeyError):
                pass
        if caller:
            self.caller = "{}:{}".format(caller.__module__, caller.__qualname__)
        elif name:
            self.caller = name

    @property
    def state(self) -> State:
        """
        Modification state of the unit of work.

        This may be set directly, computed from `parts`, or defaulted to `State.unchanged`.
        """
        if self._state:
            return self._state
        elif any(self.parts):
            if State.created in (part.state for part in self.parts):
                return State.created
            else:
                return State.success
        else:
            return State.unchanged

    @state.setter
    def state(self, state: State) -> None:
        self._state = state

    @property
    def value(self) -> T:
        """
        Return value produced by the unit of work.

        Accessing this attribute will raise `ValueError` if no value has been set.
        """
        if isinstance(self._value, Unset):
            raise ValueError("No value set")
        return self._value

    @value.setter
    def value(self, value: T) -> None:
        self._value = value

    def __bool__(self) -> bool:
        return bool(self.state)

    def __iter__(self) -> Generator["Result[T]", None, "Result[T]"]:
        # Syntactic sugar used by `yield from` expressions in `Result.collect()`.
        yield self
        return self

    def __repr__(self) -> str:
        params = [str(self.state)]
        if not isinstance(self._value, Unset):
            params.append(repr(self._value))
        if self.parts:
            params.append("<{} parts>".format(len(self.parts)))
        return "{}({})".format(self.__class__.__name__, ", ".join(params))

    def __str__(self) -> str:
        tree = "{}: {}".format(self.caller, self.state.name)
        if not isinstance(self._value, Unset):
            tree = "{} {!r}".format(tree, self._value)
        if self.parts:
            for result in self.parts:
                tree += "\n    {}".format(str(result).replace("\n", "\n    "))
        return tree


class Password:
    """
    Container of secret command arguments.  Use `str(passwd)` to get the actual value.
    """

    def __init__(self, value: str):
        self._value = value

    def __str__(self):
        return self._value

    def __repr__(self):
        return "<{}: '***'>".format(self.__class__.__name__)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Password):
            return NotImplemented
        return str(self) == str(other)

    def __hash__(self) -> int:
        return hash(str(self))


Arg = Union[str, Password]
"""
Single command-line argument, with `Password` values hidden from logs and error messages.
"""


class Output(NamedTuple):
    """
    Captured text output of a successful command, with NUL bytes removed.
    """

    args: List[Arg]
    stdout: str
    stderr: str


class CommandError(Exception):
    """
    Base class for failures to run an external command.
    """

    def __init__(self, argv: Sequence[Arg], message: str):
        super().__init__(message)
        self.argv = list(argv)


class SpawnFailed(CommandError):
    """
    The command's process could not be created, e.g. the executable doesn't exist.
    """

    def __init__(self, argv: Sequence[Arg]):
        super().__init__(argv, "Unable to create command {!r}".format(list(argv)))


class NonZeroExit(CommandError):
    """
    The command ran but reported failure.  `code` is `None` if it was killed by a signal.
    """

    def __init__(self, argv: Sequence[Arg], code: Optional[int], stdout: str = "",
                 stderr: str = ""):
        self.code = code
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(argv, '{!r} {{ exit code: {}, stdout: "{}", stderr: "{}" }}'
                               .format(list(argv), "NIL" if code is None else code,
                                       stdout.strip(), stderr.strip()))


class PollTimeout(Exception):
    """
    A polled value never reached its target within the allowed number of attempts.
    """

    def __init__(self, target: Any, attempts: int):
        super().__init__("Target {} not reached after {} attempt(s)".format(target, attempts))
        self.target = target
        self.attempts = attempts


def _decode(data: Optional[bytes]) -> str:
    # NSSM writes UTF-16 text, which leaves a zero byte after each character when read narrowly.
    if not data:
        return ""
    return data.replace(b"\0", b"").decode("utf-8", "replace")


def command(args: Sequence[Arg]) -> Output:
    """
    Create a subprocess to execute an external command, capturing its output.

    Arguments are passed to the process as a vector, so values containing spaces or quotes are
    never reinterpreted by a shell.
    """
    LOG.debug("Exec: %r", list(args))
    argv = [str(arg) for arg in args]
    try:
        proc = subprocess.run(argv, stdin=subprocess.DEVNULL, stdout=subprocess.PIPE,
                              stderr=subprocess.PIPE)
    except OSError as ex:
        raise SpawnFailed(args) from ex
    stdout = _decode(proc.stdout)
    stderr = _decode(proc.stderr)
    if proc.returncode:
        # Negative return codes are signals on POSIX, there's no exit code to report.
        code = proc.returncode if proc.returncode > 0 else None
        raise NonZeroExit(args, code, stdout, stderr)
    return Output(list(args), stdout, stderr)


def poll_until(query: Callable[[], T], target: T, interval: float, max_attempts: int,
               label: str = "target state",
               errors: Tuple[Type[Exception], ...] = (CommandError, ValueError)) -> Result[int]:
    """
    Call `query` until it returns `target`, up to `max_attempts` times and sleeping `interval`
    seconds between attempts (but not after the last one).

    A query raising one of `errors` counts as an attempt where the target wasn't reached.  The
    result value is the number of attempts used; `PollTimeout` is raised if they run out.
    """
    for attempt in range(1, max_attempts + 1):
        if attempt > 1:
            LOG.info("Still waiting for %s (attempt %d of %d)...", label, attempt - 1,
                     max_attempts)
            time.sleep(interval)
        try:
            current = query()
        except errors as ex:
            LOG.debug("Poll for %s failed: %s", label, ex)
            continue
        if current == target:
            return Result(State.success, attempt)
    raise PollTimeout(target, max_attempts)


def causes(ex: BaseException) -> List[str]:
    """
    List the messages of an exception and each exception that caused it, outermost first.
    """
    chain = []
    current: Optional[BaseException] = ex
    while current is not None:
        chain.append(str(current) or current.__class__.__name__)
        if current.__cause__ is not None:
            current = current.__cause__
        elif current.__suppress_context__:
            current = None
        else:
            current = current.__context__
    return chain


def log_chain(log: logging.Logger, level: int, ex: BaseException, prefix: str = "ERROR") -> None:
    """
    Log an exception followed by one line per underlying cause:

        ERROR: unable to install service 'Foo'
        > Caused by: ['nssm', 'install', ...] { exit code: 1, ... }
    """
    first, *rest = causes(ex)
    log.log(level, "%s: %s", prefix, first)
    for cause in rest:
        log.log(level, "> Caused by: %s", cause)
