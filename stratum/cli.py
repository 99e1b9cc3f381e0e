import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from stratum.client import SyncClient
from stratum.config import Config
from stratum.errors import SyncError
from stratum.metadata import PutOptions


class ColoredFormatter(logging.Formatter):
    """
    Custom formatter with colors for different log levels
    """

    COLORS = {
        logging.DEBUG: "\033[90m",  # Grey
        logging.INFO: "\033[37m",  # White
        logging.WARNING: "\033[33m",  # Yellow
        logging.ERROR: "\033[31m",  # Red
        logging.CRITICAL: "\033[31m",  # Red
    }
    RESET = "\033[0m"

    ABBREVIATIONS = {
        "DEBUG": "DBG",
        "INFO": "INF",
        "WARNING": "WRN",
        "ERROR": "ERR",
        "CRITICAL": "CRT",
    }

    def format(self, record):
        color = self.COLORS.get(record.levelno, self.RESET)
        levelname_abbr = self.ABBREVIATIONS.get(record.levelname, record.levelname[:3])
        record.levelname = f"{color}{levelname_abbr:>3}{self.RESET}"
        record.msg = f"{color}{record.msg}{self.RESET}"
        return super().format(record)


def run_with_client(config: Config, action: Callable[[SyncClient], Awaitable[Any]]):
    """
    Runs action against a client built from config, persisting the cache
    afterwards even if the action failed.
    """

    async def runner():
        async with SyncClient(
            options=config.options,
            transport=config.make_transport(),
            cache=config.load_cache(),
        ) as client:
            try:
                return await action(client)
            finally:
                config.save_cache(await client.dump_cache())

    try:
        return asyncio.run(runner())
    except SyncError as e:
        raise click.ClickException(str(e)) from e


def print_commit(result) -> None:
    console = Console()
    console.print(
        f"Root [green]{result['hash'][:12]}...[/green] "
        f"at generation [magenta]{result['generation']}[/magenta]"
    )
    for item_id, item_hash in result["hashes"].items():
        console.print(f"  [cyan]{item_id}[/cyan] -> {item_hash[:12]}...")
    if not result["synced"]:
        console.print("[yellow]Other clients were not notified[/yellow]")


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(
        ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False
    ),
    default="INFO",
)
@click.option(
    "-c",
    "--config-path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=Path("~/.config/stratum/config.yaml").expanduser(),
)
@click.pass_context
def main(ctx, log_level: str, config_path: Path):
    # Configure logging with custom colored formatter
    handler = logging.StreamHandler()
    handler.setFormatter(
        ColoredFormatter("%(asctime)s | %(levelname)s | %(message)s", datefmt="%H:%M")
    )
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        handlers=[handler],
    )
    ctx.obj = Config(config_path)


@main.command()
@click.pass_obj
def root(config: Config):
    """
    Show the current root hash and generation
    """
    root_hash, generation = run_with_client(
        config, lambda client: client.get_root(refresh=True)
    )
    Console().print(f"[green]{root_hash}[/green] generation [magenta]{generation}[/magenta]")


@main.command("ls")
@click.option("--refresh/--no-refresh", default=True)
@click.pass_obj
def list_items(config: Config, refresh: bool):
    """
    List all items in the tree
    """
    items = run_with_client(config, lambda client: client.list_items(refresh=refresh))
    table = Table()
    table.add_column("Id", style="cyan")
    table.add_column("Name", style="white")
    table.add_column("Type", style="green")
    table.add_column("Parent", style="magenta")
    table.add_column("Modified", style="yellow")
    for item in sorted(items, key=lambda i: (i["parent"], i["visible_name"])):
        modified = datetime.fromtimestamp(int(item["last_modified"]) / 1000)
        name = item["visible_name"] + (" *" if item["pinned"] else "")
        table.add_row(
            item["id"],
            name,
            item["type"].removesuffix("Type"),
            item["parent"] or "[dim]root[/dim]",
            modified.strftime("%Y-%m-%d %H:%M:%S"),
        )
    Console().print(table)


@main.command("mv")
@click.argument("item_ids", nargs=-1, required=True)
@click.argument("parent")
@click.pass_obj
def move(config: Config, item_ids: tuple[str, ...], parent: str):
    """
    Move items into a folder ("" for the top level)
    """

    async def action(client: SyncClient):
        return await client.tree.retrying(
            lambda: client.bulk_move(list(item_ids), parent, refresh=True)
        )

    print_commit(run_with_client(config, action))


@main.command("rm")
@click.argument("item_ids", nargs=-1, required=True)
@click.pass_obj
def delete(config: Config, item_ids: tuple[str, ...]):
    """
    Move items to the trash
    """

    async def action(client: SyncClient):
        return await client.tree.retrying(
            lambda: client.bulk_delete(list(item_ids), refresh=True)
        )

    print_commit(run_with_client(config, action))


@main.command()
@click.argument("item_id")
@click.argument("name")
@click.pass_obj
def rename(config: Config, item_id: str, name: str):
    """
    Change the display name of an item
    """

    async def action(client: SyncClient):
        return await client.tree.retrying(
            lambda: client.rename(item_id, name, refresh=True)
        )

    print_commit(run_with_client(config, action))


@main.command()
@click.argument("name")
@click.option("--parent", default="")
@click.pass_obj
def mkdir(config: Config, name: str, parent: str):
    """
    Create a folder
    """

    async def action(client: SyncClient):
        return await client.tree.retrying(
            lambda: client.create_folder(name, parent, refresh=True)
        )

    print_commit(run_with_client(config, action))


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--name", default=None, help="Display name (defaults to file stem)")
@click.option("--parent", default="")
@click.option("--pinned/--no-pinned", default=False)
@click.option("--title", default=None)
@click.option("--author", "authors", multiple=True)
@click.option("--publisher", default=None)
@click.option("--publication-date", default=None)
@click.option("--tag", "tags", multiple=True)
@click.option("--cover-page", type=int, default=-1, help="0 for first, -1 for last visited")
@click.option("--font-name", default="")
@click.option("--text-scale", type=float, default=1)
@click.option(
    "--text-alignment", type=click.Choice(["justify", "left"]), default="justify"
)
@click.option(
    "--orientation", type=click.Choice(["portrait", "landscape"]), default="portrait"
)
@click.option(
    "--zoom-mode",
    type=click.Choice(["bestFit", "customFit", "fitToHeight", "fitToWidth"]),
    default="bestFit",
)
@click.option("--background-filter", type=click.Choice(["off", "fullpage"]), default=None)
@click.pass_obj
def upload(
    config: Config,
    path: Path,
    name: str | None,
    parent: str,
    pinned: bool,
    title: str | None,
    authors: tuple[str, ...],
    publisher: str | None,
    publication_date: str | None,
    tags: tuple[str, ...],
    cover_page: int,
    font_name: str,
    text_scale: float,
    text_alignment: str,
    orientation: str,
    zoom_mode: str,
    background_filter: str | None,
):
    """
    Upload a pdf or epub as a new document
    """
    file_type = path.suffix.lower().lstrip(".")
    if file_type not in ("pdf", "epub"):
        raise click.BadParameter("Only .pdf and .epub files can be uploaded")
    data = path.read_bytes()
    options = PutOptions(
        pinned=pinned,
        title=title,
        authors=list(authors) or None,
        publisher=publisher,
        publication_date=publication_date,
        tags=list(tags),
        cover_page_number=cover_page,
        font_name=font_name,
        text_scale=text_scale,
        text_alignment=text_alignment,
        orientation=orientation,
        zoom_mode=zoom_mode,
        view_background_filter=background_filter,
    )

    async def action(client: SyncClient):
        return await client.tree.retrying(
            lambda: client.tree.upload_document(
                name or path.stem, file_type, data, parent, options, refresh=True
            )
        )

    print_commit(run_with_client(config, action))


@main.command()
@click.argument("item_id")
@click.option(
    "-o",
    "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Where to write the zip (defaults to <item_id>.zip)",
)
@click.pass_obj
def download(config: Config, item_id: str, output: Path | None):
    """
    Download every file of an item as a zip
    """
    archive = run_with_client(
        config, lambda client: client.get_document(item_id, refresh=True)
    )
    output = output or Path(f"{item_id}.zip")
    output.write_bytes(archive)
    Console().print(f"Wrote [cyan]{output}[/cyan] ({len(archive)} bytes)")


@main.group()
def cache():
    """
    Inspect and maintain the local hash cache
    """
    pass


@cache.command("prune")
@click.pass_obj
def cache_prune(config: Config):
    """
    Drop cached hashes the current root no longer references
    """
    pruned = run_with_client(config, lambda client: client.prune_cache(refresh=True))
    Console().print(f"Pruned {pruned} entries")


@cache.command("clear")
@click.pass_obj
def cache_clear(config: Config):
    """
    Empty the cache file
    """
    if config.cache_path is not None and config.cache_path.is_file():
        config.cache_path.unlink()


if __name__ == "__main__":
    main()
