import sys

import click
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from netledger.cli.main import echo_json, fail, get_runtime, wants_json
from netledger.logging import EXIT_RUNTIME_ERROR
from netledger.services.revisions import DIFF_FORMATS

console = Console()


def _resolve_or_exit(ctx, runtime, ref: str) -> str:
    content_hash = runtime.content.resolve_reference(ref)
    if content_hash is None:
        if wants_json(ctx):
            echo_json({"success": False, "error": "content_not_found", "ref": ref})
        else:
            click.echo(f"✗ No content matches {ref}", err=True)
        sys.exit(EXIT_RUNTIME_ERROR)
    return content_hash


# =============================================================================
# Content store
# =============================================================================

@click.group()
def content():
    """Content-addressable store commands."""
    pass


@content.command("put")
@click.argument("source", type=click.File("rb"), default="-")
@click.option("--type", "content_type", default="text/plain", help="Content type to record")
@click.pass_context
def put_content(ctx, source, content_type):
    """Store a file (or stdin) and print its hash."""
    try:
        runtime = get_runtime(ctx)
        digest = runtime.content.store(source.read(), content_type)
    except Exception as exc:
        fail(ctx, exc)
        return
    if wants_json(ctx):
        echo_json({"success": True, "hash": digest, "reference": runtime.content.reference(digest)})
    else:
        click.echo(digest)


@content.command("get")
@click.argument("ref")
@click.pass_context
def get_content(ctx, ref):
    """Write the content for a hash or ref: locator to stdout."""
    runtime = get_runtime(ctx)
    digest = _resolve_or_exit(ctx, runtime, ref)
    data = runtime.content.retrieve(digest)
    if wants_json(ctx):
        echo_json({"hash": digest, "content": data.decode("utf-8", errors="replace")})
    else:
        click.get_binary_stream("stdout").write(data)


@content.command("ref")
@click.argument("content_hash")
@click.pass_context
def content_ref(ctx, content_hash):
    """Print the short ref: locator for a hash."""
    runtime = get_runtime(ctx)
    click.echo(runtime.content.reference(content_hash))


@content.command("resolve")
@click.argument("ref")
@click.pass_context
def resolve_ref(ctx, ref):
    """Resolve a ref: locator (or hash prefix) to the full hash."""
    runtime = get_runtime(ctx)
    digest = _resolve_or_exit(ctx, runtime, ref)
    meta = runtime.content.get_metadata(digest)
    if wants_json(ctx):
        echo_json({"hash": digest, "size": meta.size, "content_type": meta.content_type, "created_at": meta.created_at})
    else:
        click.echo(digest)


# =============================================================================
# Artifacts
# =============================================================================

@click.group()
def artifact():
    """Artifact and revision commands."""
    pass


@artifact.command("create")
@click.argument("job_id")
@click.option("--mime-type", default=None, help="MIME type (defaults to NETLEDGER_DEFAULT_MIME_TYPE)")
@click.option("--task", "task_id", default=None, help="Owning task id")
@click.pass_context
def create_artifact(ctx, job_id, mime_type, task_id):
    """Create an artifact with an empty initial revision."""
    try:
        runtime = get_runtime(ctx)
        created = runtime.artifacts.create(job_id, mime_type, task_id=task_id)
    except Exception as exc:
        fail(ctx, exc)
        return
    if wants_json(ctx):
        echo_json({"success": True, "artifact_id": created.artifact_id, "revision_id": created.current_revision})
    else:
        console.print(f"[green]✓[/green] Created artifact {created.artifact_id}")


@artifact.command("commit")
@click.argument("artifact_id")
@click.argument("source", type=click.File("r"), default="-")
@click.option("-m", "--message", default="Update", help="Commit message")
@click.option("--author", default=None, help="Author id")
@click.pass_context
def commit_artifact(ctx, artifact_id, source, message, author):
    """Commit a file (or stdin) as the next revision."""
    try:
        runtime = get_runtime(ctx)
        revision = runtime.artifacts.commit_text(artifact_id, source.read(), message, author)
    except Exception as exc:
        fail(ctx, exc)
        return
    if wants_json(ctx):
        echo_json({"success": True, "revision_id": revision.revision_id, "content_hash": revision.content_hash})
    else:
        console.print(f"[green]✓[/green] Committed revision {revision.revision_id}")


@artifact.command("show")
@click.argument("artifact_id")
@click.pass_context
def show_artifact(ctx, artifact_id):
    """Show artifact details."""
    runtime = get_runtime(ctx)
    try:
        stat = runtime.artifacts.stat(artifact_id)
    except KeyError:
        if wants_json(ctx):
            echo_json({"success": False, "error": "artifact_not_found"})
        else:
            console.print(f"[red]Artifact {artifact_id} not found[/red]")
        return
    if wants_json(ctx):
        echo_json(stat.__dict__)
        return
    console.print(f"[bold]Artifact {stat.artifact_id}[/bold] ({stat.mime_type})")
    console.print(f"Current revision: {stat.current_revision}")
    console.print(f"Content: {stat.reference} ({stat.size} bytes)")
    console.print(f"Revisions: {stat.revision_count}")


@artifact.command("log")
@click.argument("artifact_id")
@click.pass_context
def artifact_log(ctx, artifact_id):
    """List revisions, newest first."""
    runtime = get_runtime(ctx)
    try:
        revisions = runtime.artifacts.get_revisions(artifact_id)
    except KeyError as exc:
        fail(ctx, exc)
        return
    if wants_json(ctx):
        echo_json([
            {
                "revision_id": r.revision_id,
                "revision_number": r.revision_number,
                "content_hash": r.content_hash,
                "message": r.commit_message,
                "author": r.author,
                "parents": r.parent_revisions,
                "created_at": r.created_at,
            }
            for r in revisions
        ])
        return
    table = Table(title=f"Revisions of {artifact_id}")
    table.add_column("#", justify="right", style="cyan")
    table.add_column("Revision", style="dim")
    table.add_column("Author", style="magenta")
    table.add_column("Message")
    table.add_column("Parents", justify="right")
    for r in revisions:
        table.add_row(str(r.revision_number), r.revision_id, r.author, r.commit_message, str(len(r.parent_revisions)))
    console.print(table)


@artifact.command("diff")
@click.argument("from_revision")
@click.argument("to_revision")
@click.option("--format", "fmt", type=click.Choice(DIFF_FORMATS), default="unified")
@click.pass_context
def artifact_diff(ctx, from_revision, to_revision, fmt):
    """Diff two revisions."""
    try:
        runtime = get_runtime(ctx)
        result = runtime.revisions.diff(from_revision, to_revision, fmt)
    except Exception as exc:
        fail(ctx, exc)
        return
    if wants_json(ctx):
        echo_json(result.to_dict())
        return
    lexer = "diff" if result.format == "unified" else "json"
    console.print(Syntax(result.diff or "", lexer))
    stats = result.stats
    console.print(f"[green]+{stats.additions}[/green] [red]-{stats.deletions}[/red] ~{stats.changes}")


@artifact.command("cat")
@click.argument("artifact_id")
@click.option("--revision", "revision_id", default=None, help="Revision id (current when omitted)")
@click.option("--lines", default=None, help="1-based inclusive line range, e.g. 3-10")
@click.pass_context
def artifact_cat(ctx, artifact_id, revision_id, lines):
    """Print the content of a revision."""
    line_range = None
    if lines:
        try:
            start, end = (int(part) for part in lines.split("-", 1))
        except ValueError:
            raise click.BadParameter("expected START-END", param_hint="--lines")
        line_range = (start, end)
    try:
        runtime = get_runtime(ctx)
        read = runtime.artifacts.read(artifact_id, revision_id, line_range=line_range)
    except Exception as exc:
        fail(ctx, exc)
        return
    if wants_json(ctx):
        echo_json(read.__dict__)
    else:
        click.echo(read.content)
