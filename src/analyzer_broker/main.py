"""CLI entrypoint for analyzer-broker."""

from pathlib import Path

import rich_click as click

from analyzer_broker import __version__
from analyzer_broker.controllers import (
    AnalyzeBlockCommand,
    AnalyzeTxCommand,
    BrokerCliController,
    ServeCommand,
)

click.rich_click.USE_MARKDOWN = True
CONTROLLER = BrokerCliController()

_ENGINE_COMMAND_HELP = (
    "Engine command, split like a shell command line. "
    "If omitted, ANALYZER_BROKER_ENGINE_COMMAND is used."
)


@click.group()
@click.version_option(version=__version__, prog_name="analyzer-broker")
def analyzer_broker() -> None:
    """Analysis broker CLI."""


@analyzer_broker.command("serve")
@click.option("--host", default=None, help="Bind address. Defaults to ANALYZER_BROKER_HOST.")
@click.option(
    "--port",
    type=click.IntRange(min=1, max=65535),
    default=None,
    help="Bind port. Defaults to ANALYZER_BROKER_PORT.",
)
@click.option("--engine-command", default=None, help=_ENGINE_COMMAND_HELP)
@click.option(
    "--scratch-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Root for per-request scratch files.",
)
def serve(
    host: str | None,
    port: int | None,
    engine_command: str | None,
    scratch_dir: Path | None,
) -> None:
    """Run the HTTP API (`/api/health`, `/api/analyze`, `/api/analyze-block`)."""

    CONTROLLER.serve(
        ServeCommand(
            host=host,
            port=port,
            engine_command=engine_command,
            scratch_dir=scratch_dir,
        ),
    )


@analyzer_broker.command("analyze")
@click.argument(
    "input_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option("--engine-command", default=None, help=_ENGINE_COMMAND_HELP)
def analyze(input_path: Path, engine_command: str | None) -> None:
    """Analyze one transaction JSON file (`raw_tx`, `network`, `prevouts`) without HTTP."""

    outcome = CONTROLLER.analyze_tx(
        AnalyzeTxCommand(input_path=input_path, engine_command=engine_command),
    )
    _emit_lines(outcome.lines)
    if not outcome.success:
        raise click.ClickException("Transaction analysis failed.")


@analyzer_broker.command("analyze-block")
@click.option(
    "--blk",
    "blk_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--rev",
    "rev_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--xor",
    "xor_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option("--engine-command", default=None, help=_ENGINE_COMMAND_HELP)
def analyze_block(
    blk_path: Path,
    rev_path: Path,
    xor_path: Path,
    engine_command: str | None,
) -> None:
    """Analyze one blk/rev/xor trio without HTTP."""

    outcome = CONTROLLER.analyze_block(
        AnalyzeBlockCommand(
            blk_path=blk_path,
            rev_path=rev_path,
            xor_path=xor_path,
            engine_command=engine_command,
        ),
    )
    _emit_lines(outcome.lines)
    if not outcome.success:
        raise click.ClickException("Block analysis failed.")


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    analyzer_broker()
