"""CLI entrypoint for Context Coach."""

from __future__ import annotations

import base64
import json
import os
from pathlib import Path
from typing import Optional

import requests
import typer

app = typer.Typer(name="context-coach", help="Context Coach command-line interface")
ingest_app = typer.Typer(name="ingest", help="Submit learning material")
app.add_typer(ingest_app, name="ingest")

DEFAULT_HOST = "http://127.0.0.1:5173"

HostOption = typer.Option(None, "--host", help="Override backend host")
ProfileOption = typer.Option(None, "--profile", help="Learner profile id (or CTXCOACH_PROFILE)")


def _resolve_host(override: Optional[str]) -> str:
    if override:
        return override.rstrip("/")
    env_host = os.environ.get("CTXCOACH_HOST")
    if env_host:
        return env_host.rstrip("/")
    return DEFAULT_HOST


def _resolve_profile(override: Optional[str]) -> str:
    profile = override or os.environ.get("CTXCOACH_PROFILE")
    if not profile:
        typer.echo("A learner profile is required: pass --profile or set CTXCOACH_PROFILE", err=True)
        raise typer.Exit(code=2)
    return profile


def _request(method: str, path: str, host: Optional[str] = None, **kwargs) -> requests.Response:
    base = _resolve_host(host)
    url = f"{base}{path}"
    kwargs.setdefault("timeout", 60)
    resp = requests.request(method, url, **kwargs)
    if not resp.ok:
        try:
            detail = resp.json()
        except ValueError:
            detail = resp.text
        typer.echo(f"Request failed ({resp.status_code}): {detail}", err=True)
        raise typer.Exit(code=1)
    return resp


def _echo_json(resp: requests.Response) -> None:
    typer.echo(json.dumps(resp.json(), indent=2))


def _metadata(title: str, author: Optional[str], technology: Optional[str], document_id: Optional[str]) -> dict:
    body: dict[str, object] = {"title": title}
    if author:
        body["author"] = author
    if technology:
        body["technology"] = technology
    if document_id:
        body["parent_document_id"] = document_id
    return body


@ingest_app.command("pdf")
def ingest_pdf(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="PDF file"),
    title: str = typer.Option(..., "--title", help="Book title"),
    author: Optional[str] = typer.Option(None, "--author"),
    technology: Optional[str] = typer.Option(None, "--technology"),
    document_id: Optional[str] = typer.Option(None, "--document-id", help="Stable id used to replace earlier ingests"),
    host: Optional[str] = HostOption,
) -> None:
    """Ingest a PDF book."""
    body = _metadata(title, author, technology, document_id)
    body["content_base64"] = base64.b64encode(path.expanduser().read_bytes()).decode("ascii")
    _echo_json(_request("POST", "/ingest/pdf", host=host, json=body))


@ingest_app.command("transcript")
def ingest_transcript(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Transcript text file"),
    title: str = typer.Option(..., "--title"),
    source_url: Optional[str] = typer.Option(None, "--url", help="Video URL"),
    author: Optional[str] = typer.Option(None, "--author"),
    technology: Optional[str] = typer.Option(None, "--technology"),
    document_id: Optional[str] = typer.Option(None, "--document-id"),
    host: Optional[str] = HostOption,
) -> None:
    """Ingest a video transcript."""
    body = _metadata(title, author, technology, document_id)
    body["transcript"] = path.expanduser().read_text(encoding="utf-8")
    if source_url:
        body["source_url"] = source_url
    _echo_json(_request("POST", "/ingest/transcript", host=host, json=body))


@ingest_app.command("docs")
def ingest_docs(
    url: str = typer.Argument(..., help="Documentation start URL"),
    title: str = typer.Option(..., "--title"),
    max_pages: Optional[int] = typer.Option(None, "--max-pages"),
    technology: Optional[str] = typer.Option(None, "--technology"),
    document_id: Optional[str] = typer.Option(None, "--document-id"),
    host: Optional[str] = HostOption,
) -> None:
    """Crawl a documentation site."""
    body = _metadata(title, None, technology, document_id)
    body["url"] = url
    if max_pages:
        body["max_pages"] = max_pages
    _echo_json(_request("POST", "/ingest/docs", host=host, json=body))


@ingest_app.command("article")
def ingest_article(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Markdown file"),
    title: str = typer.Option(..., "--title"),
    source_url: Optional[str] = typer.Option(None, "--url"),
    author: Optional[str] = typer.Option(None, "--author"),
    technology: Optional[str] = typer.Option(None, "--technology"),
    document_id: Optional[str] = typer.Option(None, "--document-id"),
    host: Optional[str] = HostOption,
) -> None:
    """Ingest a markdown article."""
    body = _metadata(title, author, technology, document_id)
    body["markdown"] = path.expanduser().read_text(encoding="utf-8")
    if source_url:
        body["source_url"] = source_url
    _echo_json(_request("POST", "/ingest/article", host=host, json=body))


@app.command()
def jobs(
    status: Optional[str] = typer.Option(None, "--status", help="queued, processing, completed or failed"),
    host: Optional[str] = HostOption,
) -> None:
    """List ingestion jobs."""
    params = {"status": status} if status else None
    _echo_json(_request("GET", "/ingest/jobs", host=host, params=params))


@app.command()
def job(
    job_id: str = typer.Argument(...),
    delete: bool = typer.Option(False, "--delete", help="Delete the job and its content"),
    host: Optional[str] = HostOption,
) -> None:
    """Show, or delete, one ingestion job."""
    if delete:
        _request("DELETE", f"/ingest/jobs/{job_id}", host=host)
        typer.echo(json.dumps({"status": "ok"}))
        return
    _echo_json(_request("GET", f"/ingest/jobs/{job_id}", host=host))


@app.command()
def search(
    q: str = typer.Argument(..., help="Query text"),
    limit: int = typer.Option(5, "--limit"),
    min_similarity: float = typer.Option(0.7, "--min-similarity"),
    source: Optional[str] = typer.Option(None, "--source", help="pdf, video_transcript, official_docs or article"),
    technology: Optional[str] = typer.Option(None, "--technology"),
    author: Optional[str] = typer.Option(None, "--author"),
    host: Optional[str] = HostOption,
) -> None:
    """Semantic search over ingested content."""
    payload: dict[str, object] = {"query": q, "limit": limit, "min_similarity": min_similarity}
    for key, value in (("source", source), ("technology", technology), ("author", author)):
        if value:
            payload[key] = value
    _echo_json(_request("POST", "/search", host=host, json=payload))


@app.command()
def chat(
    message: str = typer.Argument(...),
    session_id: Optional[str] = typer.Option(None, "--session", help="Continue an existing conversation"),
    profile: Optional[str] = ProfileOption,
    host: Optional[str] = HostOption,
) -> None:
    """Ask the coach and print the answer as it streams."""
    payload: dict[str, object] = {"message": message}
    if session_id:
        payload["session_id"] = session_id
    headers = {"X-Profile-Id": _resolve_profile(profile)}
    resp = _request("POST", "/chat/stream", host=host, json=payload, headers=headers, stream=True, timeout=300)
    with resp:
        for line in resp.iter_lines(decode_unicode=True):
            if not line or not line.startswith("data: "):
                continue
            event = json.loads(line[len("data: ") :])
            kind = event.get("type")
            if kind == "start":
                typer.echo(f"[session {event['session_id']}]", err=True)
            elif kind == "content":
                typer.echo(event["text"], nl=False)
            elif kind == "done":
                typer.echo("")
            elif kind == "error":
                typer.echo(f"\nError: {event['message']}", err=True)
                raise typer.Exit(code=1)


@app.command()
def sessions(
    profile: Optional[str] = ProfileOption,
    host: Optional[str] = HostOption,
) -> None:
    """List conversations."""
    headers = {"X-Profile-Id": _resolve_profile(profile)}
    _echo_json(_request("GET", "/sessions", host=host, headers=headers))


@app.command()
def memories(
    category: Optional[str] = typer.Option(None, "--category"),
    profile: Optional[str] = ProfileOption,
    host: Optional[str] = HostOption,
) -> None:
    """List what the coach remembers about the learner."""
    headers = {"X-Profile-Id": _resolve_profile(profile)}
    params = {"category": category} if category else None
    _echo_json(_request("GET", "/memories", host=host, headers=headers, params=params))


@app.command()
def serve(
    bind: str = typer.Option("127.0.0.1", "--bind"),
    port: int = typer.Option(5173, "--port"),
) -> None:
    """Run the API server."""
    import uvicorn

    uvicorn.run("context_coach.app:app", host=bind, port=port)


if __name__ == "__main__":
    app()
