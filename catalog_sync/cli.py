"""
CatalogSync CLI - Command line interface for catalog maintenance.

Usage:
    catalog-sync --help              Show all commands
    catalog-sync serve               Start the API process (scheduler included)
    catalog-sync import-data cards   Import the card catalog now
    catalog-sync import-data sets    Import the set catalog now
    catalog-sync jobs                List recent jobs
    catalog-sync cancel-stale        Cancel jobs orphaned by a crash
"""

import asyncio
from enum import Enum

import typer

app = typer.Typer(
    name="catalog-sync",
    help="CatalogSync CLI - card and set catalog maintenance",
    no_args_is_help=True,
)


class Dataset(str, Enum):
    cards = "cards"
    sets = "sets"


def _print_success(message: str) -> None:
    """Print a success message."""
    typer.echo(f"  ✅ {message}")


def _print_error(message: str) -> None:
    """Print an error message to stderr."""
    typer.echo(f"❌ {message}", err=True)


@app.command("import-data")
def import_data(
    dataset: Dataset = typer.Argument(..., help="Dataset to import: cards or sets"),
):
    """Download and import a dataset, waiting for the result."""
    from catalog_sync.core.errors import ImportFailedError
    from catalog_sync.core.logging import setup_logging
    from catalog_sync.dependencies import build_services

    setup_logging()

    async def run() -> int:
        services = await build_services()
        importer = services.bulk_data if dataset is Dataset.cards else services.set_data
        try:
            job = await importer.create_import_job(trigger="manual")
            typer.echo(f"\n📦 Importing {dataset.value} (job {job.id})")
            await importer.download_and_import(job.id)
            finished = await services.jobs.get(job.id)
        except ImportFailedError as e:
            _print_error(str(e))
            return 1
        finally:
            await services.aclose()

        metadata = finished.job_metadata if finished else {}
        _print_success(
            f"{dataset.value} import completed: "
            f"{metadata.get('processed_records', 0)} imported, "
            f"{metadata.get('failed_records', 0)} failed"
        )
        return 0

    raise typer.Exit(asyncio.run(run()))


@app.command()
def jobs(
    page: int = typer.Option(1, "--page", help="Page number"),
    page_size: int = typer.Option(20, "--page-size", help="Jobs per page"),
    as_json: bool = typer.Option(False, "--json", help="Print as JSON"),
):
    """List recent jobs, newest first."""
    from catalog_sync.core.logging import setup_logging
    from catalog_sync.dependencies import build_services
    from catalog_sync.schemas.job import JobListResponse, JobResponse

    setup_logging()

    async def run() -> JobListResponse:
        services = await build_services()
        try:
            items, total = await services.jobs.list(page=page, page_size=page_size)
        finally:
            await services.aclose()
        return JobListResponse(
            jobs=[JobResponse.model_validate(job) for job in items],
            total=total,
            page=page,
            page_size=page_size,
        )

    result = asyncio.run(run())
    if as_json:
        typer.echo(result.model_dump_json(indent=2))
        return

    typer.echo(f"\n{result.total} jobs (page {result.page})")
    for job in result.jobs:
        line = f"  {job.created_at:%Y-%m-%d %H:%M} {job.type.value:<17} {job.status.value:<11} {job.id}"
        if job.error:
            line += f"  {job.error[:60]}"
        typer.echo(line)


@app.command("cancel-stale")
def cancel_stale():
    """Cancel jobs left pending or in progress by a previous process."""
    from catalog_sync.core.logging import setup_logging
    from catalog_sync.dependencies import build_services

    setup_logging()

    async def run() -> int:
        services = await build_services()
        try:
            return await services.jobs.cancel_stale_jobs()
        finally:
            await services.aclose()

    cancelled = asyncio.run(run())
    _print_success(f"Cancelled {cancelled} stale jobs")


@app.command()
def migrate():
    """Run database migrations (alembic upgrade head)."""
    import subprocess

    result = subprocess.run(["alembic", "upgrade", "head"], check=False)
    raise typer.Exit(result.returncode)


@app.command()
def serve(
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable hot reload"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to run on"),
):
    """Start the API server."""
    import subprocess

    cmd = ["uvicorn", "catalog_sync.main:app", "--host", "0.0.0.0", "--port", str(port)]
    if reload:
        cmd.append("--reload")

    subprocess.run(cmd, check=False)


if __name__ == "__main__":
    app()
