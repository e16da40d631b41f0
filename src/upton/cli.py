from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from upton.config import DEFAULT_CONFIG_PATH, AppConfig, load_config
from upton.downloader import Downloader
from upton.storage.keys import build_cache_key
from upton.utils import load_env_file

app = typer.Typer(help="Fetch resources through a local disk cache.")


@app.callback()
def main() -> None:
    """upton: fetch-and-cache CLI."""
    return None


def _load_base_config(config: Path) -> AppConfig:
    load_env_file(Path(".env"))
    try:
        return load_config(config)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--config") from exc


def _stderr(message: str) -> None:
    typer.echo(message, err=True)


@app.command()
def get(
    uri: str = typer.Argument(..., help="Resource to fetch."),
    cache: Optional[bool] = typer.Option(
        None, "--cache/--no-cache", help="Read and write the disk cache."
    ),
    cache_location: Optional[Path] = typer.Option(
        None, "--cache-location", help="Cache directory (default: <tmp>/upton)."
    ),
    readable_filenames: Optional[bool] = typer.Option(
        None,
        "--readable-filenames/--hashed-filenames",
        help="Name entries after the URI plus a timestamp (never re-served).",
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Show fetch progress."),
    max_timeout_retries: Optional[int] = typer.Option(
        None,
        "--max-timeout-retries",
        min=0,
        help="Stop retrying timeouts after N retries (default: retry forever).",
    ),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Write the body here instead of stdout."
    ),
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", help="Path to upton.yaml."),
) -> None:
    """Fetch URI, serving it from the cache when an entry exists."""
    base = _load_base_config(config)
    options = {
        "cache": cache,
        "cache_location": cache_location,
        "readable_filenames": readable_filenames,
        "verbose": verbose or None,
        "max_timeout_retries": max_timeout_retries,
    }
    try:
        downloader = Downloader(uri, options, config=base, log=_stderr)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    result = downloader.fetch()

    if output is not None:
        output.write_bytes(result.content)
        _stderr(f"Wrote {len(result.content)} bytes to {output}")
    elif result.content:
        typer.echo(result.content, nl=False)

    if not result.content:
        typer.secho(
            f"No content for {uri} ({result.outcome.value})",
            fg=typer.colors.YELLOW,
            err=True,
        )
        raise typer.Exit(code=1)


@app.command()
def key(
    uri: str = typer.Argument(..., help="Resource to derive the cache key for."),
    readable_filenames: Optional[bool] = typer.Option(
        None, "--readable-filenames/--hashed-filenames"
    ),
    cache_location: Optional[Path] = typer.Option(None, "--cache-location"),
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", help="Path to upton.yaml."),
) -> None:
    """Print the cache key and entry path for URI without fetching."""
    base = _load_base_config(config)
    settings = AppConfig.from_options(
        {"readable_filenames": readable_filenames, "cache_location": cache_location},
        base=base,
    ).cache
    cache_key = build_cache_key(
        uri,
        readable=settings.readable_filenames,
        max_length=settings.max_filename_length,
    )
    typer.echo(cache_key)
    typer.echo(str(settings.location / cache_key))


if __name__ == "__main__":
    app()
