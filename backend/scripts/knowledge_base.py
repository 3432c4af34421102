from __future__ import annotations

import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import typer
from sqlmodel import Session

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from lms_api import db  # noqa: E402
from lms_api.services.gemini import GeminiClient  # noqa: E402
from lms_api.services.vector_search import VectorSearchService  # noqa: E402

APP = typer.Typer(add_completion=False, help="Manage the chatbot knowledge base.")


def _load_entries(path: Path) -> List[Dict[str, Any]]:
    """Read documents from a JSON list or from blank-line separated plain text."""
    raw = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        data = json.loads(raw)
        if not isinstance(data, list):
            raise typer.BadParameter("JSON knowledge files must contain a list of documents")
        entries = []
        for item in data:
            if isinstance(item, str):
                entries.append({"content": item, "metadata": None})
            else:
                entries.append({"content": item["content"], "metadata": item.get("metadata")})
        return entries
    chunks = [chunk.strip() for chunk in raw.split("\n\n")]
    return [{"content": chunk, "metadata": {"source": path.name}} for chunk in chunks if chunk]


@APP.command()
def ingest(file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True)) -> None:
    """Embed every document in FILE and store it for vector search."""
    entries = _load_entries(file)
    if not entries:
        typer.secho("No documents found.", fg=typer.colors.YELLOW)
        raise typer.Exit(code=1)

    db.init_db()
    with Session(db.engine) as session:
        search = VectorSearchService(session, GeminiClient())
        for index, entry in enumerate(entries, start=1):
            document = search.add_document(entry["content"], entry["metadata"])
            typer.echo(f"[{index}/{len(entries)}] stored {document.id}")
    typer.secho(f"Ingested {len(entries)} documents.", fg=typer.colors.GREEN)


@APP.command("warm-up")
def warm_up(
    queries: List[str] = typer.Argument(..., help="Queries to precompute in the running API's cache"),
    base_url: str = typer.Option(os.getenv("API_BASE_URL", "http://localhost:8000"), help="API base URL"),
    token: Optional[str] = typer.Option(os.getenv("API_BEARER_TOKEN"), help="Admin JWT"),
    limit: int = typer.Option(5),
    threshold: float = typer.Option(0.6),
) -> None:
    """Ask the running API to precompute search results for QUERIES."""
    if not token:
        typer.secho("An admin token is required (--token or API_BEARER_TOKEN).", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    response = httpx.post(
        f"{base_url.rstrip('/')}/chatbot/cache/warm-up",
        json={"queries": queries, "limit": limit, "threshold": threshold},
        headers={"Authorization": f"Bearer {token}"},
        timeout=120.0,
    )
    if response.status_code != 200:
        typer.secho(f"Warm-up failed ({response.status_code}): {response.text}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    result = response.json()
    typer.echo(f"Cached {result['success_count']} queries, {result['fail_count']} failed.")


if __name__ == "__main__":
    APP()
