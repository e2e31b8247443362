import logging
import sys
import click
import structlog

from config import Settings, get_settings
from errors import LedgerError
from pipeline import process_file
from records import write_states


def configure_logging(settings: Settings) -> None:
    """Configure structured logging on stderr; stdout carries only the report."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=settings.log_level.upper(),
        force=True,
    )

    if settings.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger()


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument(
    "input_path",
    type=click.Path(exists=True, dir_okay=False, readable=True)
)
def cli(input_path: str):
    """Compute final client balances from the transaction CSV at INPUT_PATH."""
    settings = get_settings()
    configure_logging(settings)

    logger.info(
        "Processing transactions",
        app=settings.app_name,
        app_version=settings.app_version,
        path=input_path
    )
    try:
        states = process_file(input_path, settings)
    except LedgerError as e:
        logger.debug("Processing failed", path=input_path, exc_info=True)
        click.echo(f"error: {e}", err=True)
        sys.exit(1)

    write_states(states, sys.stdout)


if __name__ == "__main__":
    cli()
