"""
Configuration document describing the services to provision, and how settings combine.

The document is TOML, for example:

    nssm_path = "C:/tools/nssm.exe"
    pending_stop_poll_ms = 500

    [global]
    start_on_create = true

    [[services]]
    name = "Foo"
    path = "bin/foo.exe"
    args = "--port 8080"

    [services.other]
    deps = "Tcpip Dhcp"
    account = { user = ".\\foo", password = "" }

All models are immutable, and merging never modifies them.
"""

import logging
import tomllib
from typing import Annotated, Any, Callable, Mapping, NamedTuple, Optional, Tuple, TypeVar

from pydantic import (BaseModel, ConfigDict, Field, field_validator, NonNegativeInt, Strict,
                      StrictBool, StrictStr, StringConstraints, ValidationError)


LOG = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_POLL_MS = 500
DEFAULT_POLL_COUNT = 5

Name = Annotated[str, StringConstraints(strict=True, min_length=1)]
Count = Annotated[NonNegativeInt, Strict()]


class ConfigError(Exception):
    """
    The configuration document couldn't be read, or doesn't describe a valid setup.
    """


class _Model(BaseModel):
    # Unknown keys are rejected, and rejected values (passwords included) are never echoed.
    model_config = ConfigDict(frozen=True, extra="forbid", hide_input_in_errors=True)


class Account(_Model):
    """
    Windows account to run a service as.  An empty password means none is required.
    """

    user: Name
    password: StrictStr = Field(repr=False)


class Overrides(_Model):
    """
    Optional service settings, given either for all services or for a single one.

    Each field set on a service takes precedence over the same field in the global block, even if
    other fields are inherited from it.
    """

    deps: Optional[StrictStr] = None
    """
    Names of other services to depend on, space delimited.
    """
    start_on_create: Optional[StrictBool] = None
    account: Optional[Account] = None


class PollSettings(NamedTuple):
    """
    How often, and how many times, to check for a pending state change.
    """

    interval_ms: int = DEFAULT_POLL_MS
    count: int = DEFAULT_POLL_COUNT

    @property
    def interval(self) -> float:
        return self.interval_ms / 1000


class Service(_Model):
    """
    Declaration of a single service.
    """

    name: Name
    path: Name
    startup_dir: Optional[StrictStr] = None
    args: Optional[StrictStr] = None
    description: Optional[StrictStr] = None
    other: Optional[Overrides] = None


class Config(_Model):
    """
    Complete setup: the NSSM executable, poll settings, global overrides and services in order.

    Global overrides are read from the `global` table, and exposed as `other` like a service's.
    """

    model_config = ConfigDict(populate_by_name=True)

    nssm_path: Name
    pending_stop_poll_ms: Count = DEFAULT_POLL_MS
    pending_stop_poll_count: Count = DEFAULT_POLL_COUNT
    pending_start_poll_ms: Count = DEFAULT_POLL_MS
    pending_start_poll_count: Count = DEFAULT_POLL_COUNT
    other: Optional[Overrides] = Field(default=None, alias="global")
    services: Tuple[Service, ...] = ()

    @field_validator("services")
    @classmethod
    def unique_names(cls, services: Tuple[Service, ...]) -> Tuple[Service, ...]:
        seen = set()
        for service in services:
            if service.name in seen:
                raise ValueError("Duplicate service name {!r}".format(service.name))
            seen.add(service.name)
        return services

    @property
    def stop_poll(self) -> PollSettings:
        return PollSettings(self.pending_stop_poll_ms, self.pending_stop_poll_count)

    @property
    def start_poll(self) -> PollSettings:
        return PollSettings(self.pending_start_poll_ms, self.pending_start_poll_count)


class EffectiveOptions(NamedTuple):
    """
    Overrides resolved for one service, recomputed on every run.
    """

    deps: Optional[str] = None
    start_on_create: Optional[bool] = None
    account: Optional[Account] = None


def merge_field(local: Optional[Overrides], global_: Optional[Overrides],
                select: Callable[[Overrides], Optional[T]]) -> Optional[T]:
    """
    Pick a single field from the service's overrides if set, otherwise from the global ones.
    """
    for block in (local, global_):
        if block is not None:
            value = select(block)
            if value is not None:
                return value
    return None


def effective_options(service: Service, config: Config) -> EffectiveOptions:
    """
    Resolve each override field for a service independently.  Accounts are never combined.
    """
    return EffectiveOptions(
        deps=merge_field(service.other, config.other, lambda other: other.deps),
        start_on_create=merge_field(service.other, config.other,
                                    lambda other: other.start_on_create),
        account=merge_field(service.other, config.other, lambda other: other.account))



def _describe(ex: ValidationError) -> str:
    issues = []
    for error in ex.errors():
        key = ".".join(str(part) for part in error["loc"]) or "configuration"
        issues.append("{}: {}".format(key, error["msg"]))
    return "; ".join(issues)


def parse_config(data: Mapping[str, Any]) -> Config:
    """
    Validate a decoded configuration document.
    """
    try:
        return Config.model_validate(data)
    except ValidationError as ex:
        raise ConfigError("Invalid configuration ({})".format(_describe(ex))) from ex


def load_config(path: str) -> Config:
    """
    Read and validate a TOML configuration file.  Any failure raises `ConfigError`.
    """
    try:
        with open(path, "rb") as conf:
            data = tomllib.load(conf)
    except OSError as ex:
        raise ConfigError("Unable to read TOML configuration file at {!r}".format(path)) from ex
    except UnicodeDecodeError as ex:
        raise ConfigError("Unable to convert configuration file {!r} into text"
                          .format(path)) from ex
    except tomllib.TOMLDecodeError as ex:
        raise ConfigError("Unable to interpret configuration file {!r} as TOML"
                          .format(path)) from ex
    config = parse_config(data)
    LOG.debug("Loaded %d service(s) from %r", len(config.services), path)
    return config
