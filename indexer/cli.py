"""Indexer CLI tool (indexerctl)."""

import typer

app = typer.Typer(name="indexerctl", help="Blockchain indexer CLI")
db_app = typer.Typer(help="Database management commands")
app.add_typer(db_app, name="db")


@db_app.command("init")
def db_init():
    """Create the metadata tables if they don't exist."""
    from indexer.db.session import init_db

    init_db()
    typer.echo("Metadata tables created (or already exist)")


@app.command("generate-key")
def generate_key():
    """Print a fresh ENCRYPTION_KEY value."""
    from indexer.core.crypto import generate_key as _generate_key

    typer.echo(_generate_key())


@app.command("worker")
def worker(
    queues: str = typer.Option(None, help="Comma-separated queues (default: all)"),
    concurrency: int = typer.Option(None, help="Worker processes"),
    loglevel: str = typer.Option("INFO", help="Log level"),
):
    """Start a Celery worker consuming the setup and job-type queues."""
    from indexer.core.config import settings
    from indexer.tasks.celery_app import QUEUE_NAMES, celery_app

    celery_app.worker_main([
        "worker",
        "--queues", queues or ",".join(QUEUE_NAMES),
        "--concurrency", str(concurrency or settings.WORKER_CONCURRENCY),
        "--loglevel", loglevel,
    ])


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", help="Host"),
    port: int = typer.Option(8000, help="Port"),
    reload: bool = typer.Option(False, help="Auto-reload"),
):
    """Start the API server."""
    import uvicorn
    uvicorn.run("indexer.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
