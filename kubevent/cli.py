import dataclasses
import functools
from collections.abc import Callable, Collection
from typing import Any

import click

from kubevent._cogs.aiokits import aiotasks
from kubevent._cogs.configs import configuration
from kubevent._core.actions import loggers
from kubevent._core.reactor import running


@dataclasses.dataclass()
class CLIControls:
    """ What the embedding code can give to the commands, but the command line cannot. """
    ready_flag: aiotasks.Flag | None = None
    stop_flag: aiotasks.Flag | None = None
    settings: configuration.OperatorSettings | None = None


class LogFormatParamType(click.Choice):
    """ The log formats by their lowercase names: ``plain``, ``full``, ``json``. """

    def __init__(self) -> None:
        super().__init__(choices=[fmt.name.lower() for fmt in loggers.LogFormat])

    def convert(self, value: Any, param: Any, ctx: Any) -> loggers.LogFormat:
        if isinstance(value, loggers.LogFormat):
            return value
        return loggers.LogFormat[super().convert(value, param, ctx).upper()]


def logging_options(fn: Callable[..., Any]) -> Callable[..., Any]:
    """ Add the logging options to a command, and set up the logging before it runs. """
    @click.option('-v', '--verbose', is_flag=True)
    @click.option('-d', '--debug', is_flag=True)
    @click.option('-q', '--quiet', is_flag=True)
    @click.option('--log-format', type=LogFormatParamType(), default='full')
    @click.option('--log-refkey', type=str)
    @click.option('--log-prefix/--no-log-prefix', default=None)
    @functools.wraps(fn)
    def wrapper(*args: Any,
                verbose: bool, debug: bool, quiet: bool,
                log_format: loggers.LogFormat, log_refkey: str | None, log_prefix: bool | None,
                **kwargs: Any) -> Any:
        loggers.configure(debug=debug, verbose=verbose, quiet=quiet,
                          log_format=log_format, log_refkey=log_refkey, log_prefix=log_prefix)
        return fn(*args, **kwargs)

    return wrapper


def _override_settings(
        settings: configuration.OperatorSettings,
        *,
        workers: int | None,
        sync_timeout: float | None,
        naming: configuration.NamingStrategy | None,
) -> configuration.OperatorSettings:
    # Only what is given in the command line; the rest stays as the embedding code has set it.
    if workers is not None:
        settings.queueing.workers = workers
    if sync_timeout is not None:
        settings.watching.sync_timeout = sync_timeout
    if naming is not None:
        settings.jobs.naming = naming
    return settings


@click.version_option(prog_name='kubevent')
@click.group(name='kubevent', context_settings={'auto_envvar_prefix': 'KUBEVENT'})
def main() -> None:
    pass


@main.command()
@logging_options
@click.option('--kubeconfig', type=click.Path(dir_okay=False))
@click.option('--context', type=str)
@click.option('--server', type=str)
@click.option('-f', '--triggers-file', 'trigger_files', multiple=True,
              type=click.Path(exists=True, dir_okay=False))
@click.option('--workers', type=click.IntRange(min=1))
@click.option('--sync-timeout', type=click.FloatRange(min=0, min_open=True))
@click.option('--naming', type=click.Choice(['deterministic', 'generated']))
@click.make_pass_decorator(CLIControls, ensure=True)
def run(
        controls: CLIControls,
        kubeconfig: str | None,
        context: str | None,
        server: str | None,
        trigger_files: Collection[str],
        workers: int | None,
        sync_timeout: float | None,
        naming: configuration.NamingStrategy | None,
) -> None:
    """ Start the controller: watch the changes and create the jobs. """
    settings = controls.settings if controls.settings is not None else configuration.OperatorSettings()
    settings = _override_settings(settings, workers=workers, sync_timeout=sync_timeout, naming=naming)
    running.run(
        settings=settings,
        kubeconfig=kubeconfig,
        context=context,
        server=server,
        trigger_files=trigger_files,
        stop_flag=controls.stop_flag,
        ready_flag=controls.ready_flag,
    )
