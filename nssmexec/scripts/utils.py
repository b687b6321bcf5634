"""
Helpers for converting methods into scripts, and filling in arguments from the configuration.
"""

from functools import wraps
from inspect import cleandoc, signature
import logging
import logging.config
import sys
from typing import Any, Callable, Dict, List, Optional, Union

from docopt import docopt
import yaml

from ..config import Config, ConfigError, load_config
from ..plumbing.common import log_chain
from ..plumbing.nssm import Nssm


LOG = logging.getLogger(__name__)

DocOptArgs = Dict[str, Union[bool, str, List[str], None]]

DEFAULT_CONFIG = "config/nssm_exec.toml"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class LoggingError(Exception):
    """
    The logging configuration file couldn't be read or applied.
    """


def configure_logging(path: Optional[str] = None, debug: bool = False) -> None:
    """
    Set up logging from a YAML file in `logging.config.dictConfig` format, or log to stderr if no
    file is given.
    """
    if not path:
        logging.basicConfig(level=logging.DEBUG if debug else logging.INFO, format=LOG_FORMAT)
        return
    try:
        with open(path) as conf:
            settings = yaml.safe_load(conf)
        logging.config.dictConfig(settings)
    except (OSError, yaml.YAMLError, AttributeError, ImportError, TypeError, ValueError) as ex:
        raise LoggingError("Unable to initialize logging with the configuration file at {!r}"
                           .format(path)) from ex
    if debug:
        logging.getLogger().setLevel(logging.DEBUG)


def _load_config(opts: DocOptArgs) -> Config:
    path = opts.get("--conf") or DEFAULT_CONFIG
    try:
        return load_config(path)
    except ConfigError as ex:
        log_chain(LOG, logging.ERROR, ex)
        sys.exit(1)


def entrypoint(fn: Callable[..., Any]) -> Callable[..., Any]:
    """
    Decorator to make an entrypoint out of a generic function.

    This uses `docopt` to parse arguments according to the method docstring, and will be formatted
    with `{script}` set to the script name.  At minimum, it should contain `Usage: {script}`.

    Functions may optionally accept arguments, but they must be annotated with a recognised type in
    order to be filled in:

    - `DocOptArgs` (a `dict` of input parameters parsed from the usage line)
    - `Config` (the configuration file named by `--conf`, loaded and validated)
    - `Nssm` (a context for the NSSM executable declared in the configuration)

    Logging is configured from the file named by `--log` before anything else.  If either the
    logging or the service configuration can't be loaded, the script exits with status 1.

    An example function:

        @entrypoint
        def check(opts: DocOptArgs, config: Config):
            \"""
            Check the configuration.

            Usage: {script} [--conf=PATH]
            \"""
    """
    label = "nssmexec-{}".format(fn.__qualname__).replace("_", "-")

    @wraps(fn)
    def wrap(opts: Optional[DocOptArgs] = None):
        script = "{} [--debug]".format(label)
        if opts is None:
            doc = cleandoc(fn.__doc__.format(script=script))
            opts = docopt(doc)
        debug = bool(opts.pop("--debug", False))
        try:
            configure_logging(opts.get("--log"), debug)
        except LoggingError as ex:
            # Still report the failure somewhere.
            logging.basicConfig(format=LOG_FORMAT)
            log_chain(LOG, logging.ERROR, ex)
            sys.exit(1)
        extra: Dict[str, Any] = {}
        config: Optional[Config] = None
        # Detect resolvable-typed arguments and fill in their values.
        for param in signature(fn).parameters.values():
            name = param.name
            cls = param.annotation
            if cls is DocOptArgs:
                extra[name] = opts
                continue
            if config is None:
                config = _load_config(opts)
            if cls is Config:
                extra[name] = config
            elif cls is Nssm:
                extra[name] = Nssm(config.nssm_path)
            else:
                raise RuntimeError("Bad parameter {!r} type {!r}".format(name, cls))
        fn(**extra)
        LOG.info("Program completed!")
    wrap.__doc__ = wrap.__doc__.format(script=label)
    return wrap


def error(msg: Optional[str] = None, *, exit: Optional[int] = None, colour: Optional[str] = None):
    """
    Print an error message and/or exit.
    """
    if msg:
        colour = colour or ("1" if exit else "3")
        print("\033[9{}m{}\033[0m".format(colour, msg), file=sys.stderr)
    if exit is not None:
        sys.exit(exit)
