"""Command-line interface for pdfcards."""

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel

from .blobs import LocalBlobStore
from .config import Config, EmptyResultPolicy
from .errors import IngestionError
from .flashcards import FlashcardService, export_flashcards
from .ingest import IngestionOrchestrator
from .io import preview_cards, preview_documents, save_csv
from .store import CardStore, create_store
from .uploads import upload_file

app = typer.Typer(
    name="pdfcards",
    help="Turn PDF documents into ordered reading cards using LLMs",
    add_completion=False,
)
console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("pdfcards").setLevel(logging.DEBUG if verbose else logging.INFO)


def _load_config(config_path: Optional[Path]) -> Config:
    if config_path:
        return Config.from_yaml(config_path)
    return Config()


def _open_store(config: Config) -> CardStore:
    config.create_workspace()
    return create_store(config.storage.database_url, echo=config.storage.echo_sql)


@app.command()
def init(
    target: Path = typer.Argument(Path("pdfcards.yaml"), help="Configuration file to create"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing file"),
) -> None:
    """Write a default configuration file and create the local workspace."""
    if target.exists() and not force:
        console.print(f"⚠️  {target} already exists. Use --force to overwrite.", style="yellow")
        raise typer.Exit(code=1)

    config = Config()
    config.to_yaml(target)
    config.create_workspace()
    create_store(config.storage.database_url)

    console.print(Panel.fit(
        f"✅ Initialization complete!\n\n"
        f"Configuration: {target}\n"
        f"Database: {config.storage.database_url}\n"
        f"Blob storage: {config.storage.blob_root}\n\n"
        "Next steps:\n"
        f"1. pdfcards upload my.pdf --user <user-id> --config {target}\n"
        f"2. pdfcards ingest <document-id> --config {target}",
        title="Success",
        style="green"
    ))


@app.command()
def upload(
    pdf_path: Path = typer.Argument(..., help="PDF file to upload"),
    user_id: str = typer.Option(..., "--user", "-u", help="Owner of the document"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to configuration file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
) -> None:
    """Store a PDF and register it as an unprocessed document."""
    _configure_logging(verbose)
    try:
        config = _load_config(config_path)
        store = _open_store(config)
        document = upload_file(store, LocalBlobStore(config.storage.blob_root), user_id, pdf_path)
    except Exception as e:
        console.print(f"❌ Upload failed: {e}", style="bold red")
        raise typer.Exit(code=1)

    console.print(f"📄 Uploaded '{document.title}' as document {document.id}", style="green")


@app.command()
def documents(
    user_id: Optional[str] = typer.Option(None, "--user", "-u", help="Only this user's documents"),
    public: bool = typer.Option(False, "--public", help="Only public documents, most viewed first"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to configuration file"),
) -> None:
    """List uploaded documents and their processing state."""
    try:
        store = _open_store(_load_config(config_path))
        listed = store.list_public_documents() if public else store.list_documents(user_id)
        preview_documents(listed, console)
    except Exception as e:
        console.print(f"❌ Error listing documents: {e}", style="bold red")
        raise typer.Exit(code=1)


@app.command()
def ingest(
    document_id: str = typer.Argument(..., help="Document to turn into cards"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to configuration file"),
    force: bool = typer.Option(False, "--force", "-f", help="Re-ingest an already processed document"),
    mark_empty: bool = typer.Option(False, "--mark-empty", help="Mark the document processed even if no cards are produced"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
) -> None:
    """Run the PDF-to-cards ingestion for one document."""
    _configure_logging(verbose)
    console.print(f"🚀 Ingesting document {document_id}...", style="bold blue")

    try:
        config = _load_config(config_path)
        if mark_empty:
            config.ingestion.empty_result_policy = EmptyResultPolicy.MARK_PROCESSED
        orchestrator = IngestionOrchestrator.from_config(config)
        result = orchestrator.ingest(document_id, force=force)
    except IngestionError as e:
        step = f" at step '{e.step}'" if e.step else ""
        console.print(f"❌ Ingestion failed{step}: {e.message}", style="bold red")
        raise typer.Exit(code=1)
    except Exception as e:
        console.print(f"❌ Error during ingestion: {e}", style="bold red")
        if verbose:
            console.print_exception()
        raise typer.Exit(code=1)

    style = "green" if result.processed else "yellow"
    console.print(Panel.fit(
        f"{'✅' if result.processed else '⚠️ '} {result.message}\n\n"
        f"Cards created: {result.cards_created}\n"
        f"Processed: {result.processed}",
        title="Ingestion",
        style=style
    ))


@app.command()
def cards(
    document_id: str = typer.Argument(..., help="Document whose cards to show"),
    n: int = typer.Option(10, "--n", help="Number of cards to preview"),
    viewer_id: Optional[str] = typer.Option(None, "--user", "-u", help="User viewing the document"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to configuration file"),
) -> None:
    """Preview the cards of a document in reading order."""
    try:
        store = _open_store(_load_config(config_path))
        store.record_view(document_id, viewer_id)
        preview_cards(store.list_cards(document_id=document_id), console, max_cards=n)
    except Exception as e:
        console.print(f"❌ Error during preview: {e}", style="bold red")
        raise typer.Exit(code=1)


@app.command()
def publish(
    document_id: str = typer.Argument(..., help="Document to share"),
    private: bool = typer.Option(False, "--private", help="Make the document private again"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to configuration file"),
) -> None:
    """Make a document public so others can read its cards."""
    try:
        store = _open_store(_load_config(config_path))
        document = store.set_public(document_id, not private)
    except Exception as e:
        console.print(f"❌ Could not update document: {e}", style="bold red")
        raise typer.Exit(code=1)
    state = "public" if document.is_public else "private"
    console.print(f"🌐 '{document.title}' is now {state}", style="green")


@app.command()
def save(
    card_id: str = typer.Argument(..., help="Card to save"),
    user_id: str = typer.Option(..., "--user", "-u", help="User saving the card"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to configuration file"),
) -> None:
    """Save a card to a user's collection."""
    try:
        store = _open_store(_load_config(config_path))
        store.save_card(user_id, card_id)
    except Exception as e:
        console.print(f"❌ Could not save card: {e}", style="bold red")
        raise typer.Exit(code=1)
    console.print("🔖 Card saved", style="green")


@app.command()
def flashcard(
    card_id: str = typer.Argument(..., help="Card to turn into a flashcard"),
    user_id: str = typer.Option(..., "--user", "-u", help="Owner of the flashcard"),
    question: Optional[str] = typer.Option(None, "--question", "-q", help="Question (defaults to the first words of the card)"),
    answer: Optional[str] = typer.Option(None, "--answer", "-a", help="Answer (defaults to the card content)"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to configuration file"),
) -> None:
    """Create a flashcard from a card."""
    try:
        config = _load_config(config_path)
        store = _open_store(config)
        service = FlashcardService(store, config.flashcards)
        created = service.create_from_card(user_id, store.get_card(card_id), question, answer)
    except Exception as e:
        console.print(f"❌ Could not create flashcard: {e}", style="bold red")
        raise typer.Exit(code=1)
    console.print(f"🃏 Flashcard created: {created.question}", style="green")


@app.command(name="export-csv")
def export_csv(
    document_id: str = typer.Argument(..., help="Document whose cards to export"),
    output: Path = typer.Option(Path("workspace/cards.csv"), "--output", "-o", help="CSV path"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to configuration file"),
) -> None:
    """Export a document's cards to CSV."""
    try:
        store = _open_store(_load_config(config_path))
        written = save_csv(store.list_cards(document_id=document_id), output)
    except Exception as e:
        console.print(f"❌ Export failed: {e}", style="bold red")
        raise typer.Exit(code=1)
    console.print(f"📊 Exported {written} cards to {output}", style="green")


@app.command(name="export-deck")
def export_deck(
    user_id: str = typer.Option(..., "--user", "-u", help="User whose flashcards to export"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output .apkg path (overrides config)"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to configuration file"),
) -> None:
    """Export a user's flashcards as an Anki deck."""
    try:
        config = _load_config(config_path)
        store = _open_store(config)
        result = export_flashcards(store, user_id, config.flashcards, output)
    except Exception as e:
        console.print(f"❌ Error during export: {e}", style="bold red")
        raise typer.Exit(code=1)

    console.print(Panel.fit(
        f"✅ Deck built successfully!\n\n"
        f"Output: {result['apkg_path']}\n"
        f"Cards: {result['total_cards']}\n"
        f"Deck: {result['deck_name']}",
        title="Success",
        style="green"
    ))


@app.command()
def serve(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to configuration file"),
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", help="Bind port"),
) -> None:
    """Serve the ingestion endpoint over HTTP."""
    import uvicorn

    from .api import create_app

    _configure_logging(False)
    uvicorn.run(create_app(config=_load_config(config_path)), host=host, port=port)


@app.command()
def version() -> None:
    """Show version information."""
    from . import __version__
    console.print(f"pdfcards version {__version__}")


if __name__ == "__main__":
    app()
