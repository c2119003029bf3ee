import logging
import importlib.metadata
from typing import List, Optional

import typer

from pandata.data.args import Args
from pandata.data.converter import build_pandata, parse_format
from pandata.data.exceptions import PandataError, ResolutionError

STDIN = "/dev/stdin"
STDOUT = "/dev/stdout"

logger = logging.getLogger(__name__)

app = typer.Typer(help="Convert tabular files between CSV, TSV, JSON lines, Parquet and Avro")


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable info logging"),
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
    version: bool = typer.Option(False, "--version", help="Show version and exit"),
):
    if version:
        version_str = importlib.metadata.version("pandata")
        typer.echo(version_str)
        raise typer.Exit()
    level = logging.WARNING
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    logging.basicConfig(level=level)
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())


def _stream_path(path: Optional[str], default: str) -> str:
    # "-" and a missing argument both mean the standard stream
    if path is None or path == "-":
        return default
    return path


@app.command()
def convert(
    from_file: Optional[str] = typer.Argument(None, metavar="FROM_FILE", help="The file to read ('-' for stdin)"),
    to_file: Optional[str] = typer.Argument(None, metavar="TO_FILE", help="The file to write ('-' for stdout)"),
    from_format: Optional[str] = typer.Option(None, "--from", "-f", metavar="FORMAT", help="Force the input format"),
    to_format: Optional[str] = typer.Option(None, "--to", "-t", metavar="FORMAT", help="Force the output format"),
    read_option: Optional[List[str]] = typer.Option(
        None, "--read-option", "-r", metavar="KEY=VALUE", help="Option passed to the reader (repeatable)"),
    write_option: Optional[List[str]] = typer.Option(
        None, "--write-option", "-w", metavar="KEY=VALUE", help="Option passed to the writer (repeatable)"),
):
    """
    Convert FROM_FILE into TO_FILE, picking formats from the file extensions unless forced.
    """
    src = _stream_path(from_file, STDIN)
    dst = _stream_path(to_file, STDOUT)
    try:
        src_fmt = parse_format(from_format, src)
        if src_fmt is None:
            raise ResolutionError("Unable to parse input format. Must be explicit if reading from stdin.")
        dst_fmt = parse_format(to_format, dst)
        if dst_fmt is None:
            raise ResolutionError("Unable to parse output format. Must be explicit if writing to stdout.")

        read_args = Args.parse(read_option or [])
        write_args = Args.parse(write_option or [])

        pandata = build_pandata()
        pandata.convert(src, dst, src_fmt, dst_fmt, read_args=read_args, write_args=write_args)
    except (PandataError, ValueError) as e:
        logger.debug("Conversion failed", exc_info=True)
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)


@app.command()
def formats():
    """
    List the registered formats with their aliases and option keys.
    """
    for fmt in build_pandata().formats():
        aliases = ", ".join(fmt.aliases) or "-"
        options = ", ".join(sorted(fmt.read_options())) or "-"
        typer.echo(f"{fmt.canonical_name}\taliases: {aliases}\toptions: {options}")
