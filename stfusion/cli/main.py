"""
stfusion CLI - Main Entry Point

Command-line interface for spatiotemporal image fusion.
Built with Click for robust argument parsing and help generation.
"""

import sys
import logging
from pathlib import Path
from typing import Optional

import click

from stfusion import __version__

# Configure logging for CLI
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("stfusion")


class FusionContext:
    """Context object for passing global options to subcommands."""

    def __init__(
        self,
        verbose: bool = False,
        quiet: bool = False,
        config_path: Optional[Path] = None,
    ):
        self.verbose = verbose
        self.quiet = quiet
        self.config_path = config_path
        self._config = None

        # Configure logging based on verbosity
        if quiet:
            logger.setLevel(logging.WARNING)
        elif verbose:
            logger.setLevel(logging.DEBUG)
        else:
            logger.setLevel(logging.INFO)

    @property
    def config(self):
        """Lazy load configuration from file, defaults and environment."""
        if self._config is None:
            from stfusion.core.config import load_config

            self._config = load_config(
                str(self.config_path) if self.config_path else None,
                use_environment=True,
            )
            if self.verbose:
                logger.debug(f"Configuration: {self._config.to_dict()}")
        return self._config


pass_context = click.make_pass_decorator(FusionContext, ensure=True)


@click.group()
@click.option(
    "-v",
    "--verbose",
    is_flag=True,
    default=False,
    help="Enable verbose output (debug logging).",
)
@click.option(
    "-q",
    "--quiet",
    is_flag=True,
    default=False,
    help="Quiet mode (only warnings and errors).",
)
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    help="Path to YAML configuration file.",
)
@click.version_option(
    version=__version__,
    prog_name="stfusion",
    message="%(prog)s version %(version)s",
)
@click.pass_context
def app(ctx, verbose: bool, quiet: bool, config_path: Optional[Path]):
    """
    stfusion - Spatiotemporal Image Fusion

    Predicts high resolution images at dates where only low resolution
    images exist, using STARFM or ESTARFM.
    """
    if verbose and quiet:
        raise click.UsageError("Cannot use both --verbose and --quiet")

    ctx.obj = FusionContext(
        verbose=verbose,
        quiet=quiet,
        config_path=config_path,
    )


def register_commands():
    """Register all subcommands."""
    from stfusion.cli import predict

    app.add_command(predict.predict)


@app.command("info")
@pass_context
def info(ctx):
    """Display the effective configuration."""
    import platform

    import numpy as np

    click.echo("\n=== stfusion ===")
    click.echo(f"  Version: {__version__}")
    click.echo(f"  Python: {platform.python_version()}")
    click.echo(f"  NumPy: {np.__version__}")

    config = ctx.config
    click.echo("\n--- Configuration ---")
    click.echo(f"  Algorithm: {config.algorithm}")
    click.echo(f"  Tags: high={config.high_tag}, low={config.low_tag}")
    click.echo(f"  Window size: {config.window_size}")
    click.echo(f"  Classes: {config.number_classes}")
    threads = config.parallel.number_of_threads
    click.echo(f"  Threads: {threads if threads is not None else 'all CPUs'}")
    click.echo()


register_commands()


def main():
    """Main entry point for the CLI."""
    try:
        app()
    except Exception as e:
        logger.error(f"Error: {e}")
        if "--verbose" in sys.argv or "-v" in sys.argv:
            import traceback

            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
