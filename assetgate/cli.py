"""assetgate operator CLI.

Usage:
    assetgate sign private:4za92:courses/c1/video.mp4 --window 3600
    assetgate reconcile records.yaml --output cleanup.sql
    assetgate delete private:4za92:courses/c1/video.mp4

Configuration comes from ASSETGATE_* environment variables (see
AssetGateConfig).

The records file is YAML or JSON: either a list of records or a mapping
with a ``records`` key. Each record has ``record_id``, an optional
``table`` and an optional ``storage_reference``.
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

import click
import yaml
from pydantic import ValidationError

from .config import AssetGateConfig
from .delivery import AssetClass, ConfigurationGap
from .errors import AssetGateError
from .reconcile import MetadataRecord, render_remediation_script
from .service import AssetGate

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )

    # Suppress per-request httpx logging
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def _load_config() -> AssetGateConfig:
    try:
        return AssetGateConfig()  # type: ignore[call-arg]  # pydantic-settings loads from env
    except ValidationError as e:
        logger.error(f"Failed to load config: {e}")
        logger.error(
            "Required environment variables: ASSETGATE_DELIVERY_HOST, "
            "ASSETGATE_B2_KEY_ID, ASSETGATE_B2_APPLICATION_KEY, ASSETGATE_BUCKET_NAME"
        )
        sys.exit(1)


def _build_gate(ctx: click.Context) -> AssetGate:
    try:
        return AssetGate.from_config(ctx.obj)
    except AssetGateError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def load_records(path: Path) -> list[MetadataRecord]:
    """Read metadata records from a YAML or JSON file."""
    with open(path, encoding="utf-8") as f:
        data: Any = yaml.safe_load(f)

    if isinstance(data, dict):
        data = data.get("records")
    if data is None:
        return []
    if not isinstance(data, list):
        raise click.BadParameter(
            "expected a list of records or a mapping with a 'records' key",
            param_hint="RECORDS_FILE",
        )
    try:
        return [MetadataRecord.model_validate(item) for item in data]
    except ValidationError as e:
        raise click.BadParameter(str(e), param_hint="RECORDS_FILE") from e


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, debug: bool) -> None:
    """assetgate - private asset storage, signing and reconciliation."""
    _configure_logging(debug)
    ctx.obj = _load_config()


@cli.command()
@click.argument("reference")
@click.option("--window", type=int, help="URL lifetime in seconds")
@click.option(
    "--asset-class",
    type=click.Choice([c.value for c in AssetClass]),
    help="Use the configured lifetime for this kind of asset",
)
@click.pass_context
def sign(ctx: click.Context, reference: str, window: int | None, asset_class: str | None) -> None:
    """Print a signed delivery URL for a private reference."""
    gate = _build_gate(ctx)

    async def run() -> None:
        async with gate:
            result = gate.issue_signed_url(
                reference,
                window,
                AssetClass(asset_class) if asset_class else None,
            )
            if isinstance(result, ConfigurationGap):
                click.echo(f"Error: {result.reason}", err=True)
                if result.fallback_url:
                    click.echo(result.fallback_url)
                sys.exit(2)
            click.echo(result.url)

    try:
        asyncio.run(run())
    except (AssetGateError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("records_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("-o", "--output", type=click.Path(path_type=Path), help="Write SQL script here")
@click.option("--id-column", default="id", show_default=True, help="Primary key column")
@click.option("--batch-size", default=100, show_default=True, type=click.IntRange(min=1))
@click.pass_context
def reconcile(
    ctx: click.Context,
    records_file: Path,
    output: Path | None,
    id_column: str,
    batch_size: int,
) -> None:
    """Find orphaned records and write a reviewable cleanup script.

    Nothing is deleted; the script must be reviewed and run by hand.
    """
    records = load_records(records_file)
    gate = _build_gate(ctx)

    async def run() -> str:
        async with gate:
            report = await gate.reconcile(records)
        summary = {
            "scanned": report.scanned_count,
            "skipped": report.skipped_count,
            "ok": report.ok_count,
            "orphaned": len(report.orphaned),
            "inconclusive": len(report.inconclusive),
        }
        click.echo(json.dumps(summary, indent=2), err=True)
        return render_remediation_script(report, id_column=id_column, batch_size=batch_size)

    try:
        script = asyncio.run(run())
    except (AssetGateError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if output:
        output.write_text(script, encoding="utf-8")
        click.echo(f"Wrote {output}", err=True)
    else:
        click.echo(script, nl=False)


@cli.command()
@click.argument("reference")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def delete(ctx: click.Context, reference: str, yes: bool) -> None:
    """Delete the object behind a private reference."""
    if not yes:
        click.confirm(f"Delete {reference}?", abort=True)
    gate = _build_gate(ctx)

    async def run() -> None:
        async with gate:
            await gate.delete(reference)

    try:
        asyncio.run(run())
    except AssetGateError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"Deleted {reference}")


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
