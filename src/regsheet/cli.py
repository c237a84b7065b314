"""Command-line interface for regsheet (regression workbook review)."""

from __future__ import annotations

import json
from pathlib import Path

import click

from regsheet import __version__
from regsheet.errors import RegsheetError


@click.group()
@click.version_option(version=__version__, prog_name="regsheet")
def main() -> None:
    """regsheet -- regression workbook ingestion and review.

    Lifecycle: Upload -> Review -> Edit -> Save
    """


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------


def _service(directory: str):
    """Open the store at *directory* and attach the event sink to it."""
    from regsheet.logging.events import set_store_dir
    from regsheet.project import is_store
    from regsheet.ui.service import ReviewService

    store_dir = Path(directory)
    if not is_store(store_dir):
        raise click.ClickException(f"No regsheet.yaml in {store_dir}; run 'regsheet init' first")
    set_store_dir(store_dir)
    return ReviewService(store_dir=store_dir)


def _parse_edits(items: tuple[str, ...]) -> list[dict[str, object]]:
    """Parse ``ROW:HEADER=VALUE`` items into edit dicts."""
    edits: list[dict[str, object]] = []
    for item in items:
        target, sep, value = item.partition("=")
        row, colon, header = target.partition(":")
        if not sep or not colon or not header:
            raise click.ClickException(f"Invalid --set format: {item!r}. Use ROW:HEADER=VALUE.")
        try:
            row_index = int(row)
        except ValueError:
            raise click.ClickException(f"Invalid row index in {item!r}")
        edits.append({"row_index": row_index, "header": header, "value": value})
    return edits


def _echo_json(data: object) -> None:
    click.echo(json.dumps(data, indent=2, ensure_ascii=False))


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


@main.command()
@click.argument("directory", type=click.Path())
def init(directory: str) -> None:
    """Scaffold a new regsheet store at DIRECTORY."""
    from regsheet.project import init_store

    try:
        result = init_store(Path(directory))
    except FileExistsError as e:
        raise click.ClickException(str(e))
    click.echo(f"Created store at {result}")


@main.command()
@click.argument("directory", type=click.Path(exists=True))
@click.argument("workbook", type=click.Path(exists=True, dir_okay=False))
@click.option("--model-type", required=True, help="Model type, e.g. 'BOM Diff'.")
@click.option("--build-type", required=True, help="Build type, e.g. 'KB Release'.")
@click.option("--release-date", default=None, help="Release week start (YYYY-MM-DD).")
def upload(
    directory: str,
    workbook: str,
    model_type: str,
    build_type: str,
    release_date: str | None,
) -> None:
    """Upload WORKBOOK (.xlsx, .xls or .csv) into the store at DIRECTORY."""
    svc = _service(directory)
    path = Path(workbook)
    try:
        result = svc.upload_workbook(
            file_bytes=path.read_bytes(),
            filename=path.name,
            model_type=model_type,
            build_type=build_type,
            release_date=release_date,
        )
    except (RegsheetError, ValueError) as e:
        raise click.ClickException(str(e))

    click.echo(f"Uploaded {path.name} as file {result['file']['id']}")
    for s in result["sheets"]:
        click.echo(f"  {s['sheet_name']:30s} {s['id']}  ({s['n_rows']} rows x {s['n_cols']} cols)")


# ---------------------------------------------------------------------------
# Files and sheets
# ---------------------------------------------------------------------------


@main.command()
@click.argument("directory", type=click.Path(exists=True))
@click.option("--model-type", default=None, help="Filter by model type.")
@click.option("--build-type", default=None, help="Filter by build type.")
@click.option("--release-date", default=None, help="Filter by release date.")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def files(
    directory: str,
    model_type: str | None,
    build_type: str | None,
    release_date: str | None,
    as_json: bool,
) -> None:
    """List uploaded files, newest first."""
    svc = _service(directory)
    records = svc.list_files(model_type, build_type, release_date)
    if as_json:
        _echo_json(records)
        return
    if not records:
        click.echo("No files found.")
        return
    for f in records:
        release = f["release_date"] or "-"
        click.echo(
            f"{f['id']}  {f['uploaded_at']}  {f['model_type']:14s} "
            f"{f['build_type']:15s} {release:10s}  {f['file_name']}"
        )


@main.command()
@click.argument("directory", type=click.Path(exists=True))
@click.argument("file_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def sheets(directory: str, file_id: str, as_json: bool) -> None:
    """List the sheets of FILE_ID in workbook order."""
    svc = _service(directory)
    try:
        records = svc.list_sheets(file_id)
    except (RegsheetError, ValueError) as e:
        raise click.ClickException(str(e))
    if as_json:
        _echo_json(records)
        return
    if not records:
        click.echo("No sheets found.")
        return
    for s in records:
        click.echo(f"{s['sheet_index']:3d}  {s['id']}  {s['sheet_name']}  ({len(s['data'])} rows)")


@main.command()
@click.argument("directory", type=click.Path(exists=True))
@click.argument("sheet_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def show(directory: str, sheet_id: str, as_json: bool) -> None:
    """Print a sheet's rows.  Editable headers are marked with '*'."""
    from regsheet.overlay import display_value

    svc = _service(directory)
    try:
        view = svc.get_sheet_view(sheet_id)
    except (RegsheetError, ValueError) as e:
        raise click.ClickException(str(e))
    if as_json:
        _echo_json(view)
        return

    click.echo(f"Sheet: {view['sheet_name']} ({view['n_rows']} rows)")
    headers = [h["name"] for h in view["headers"]]
    click.echo("\t".join(["#"] + [f"{h['name']}*" if h["editable"] else h["name"] for h in view["headers"]]))
    for i, row in enumerate(view["data"]):
        click.echo("\t".join([str(i)] + [display_value(row.get(h)) for h in headers]))


@main.command()
@click.argument("directory", type=click.Path(exists=True))
@click.argument("file_id")
def check(directory: str, file_id: str) -> None:
    """Verify that FILE_ID has every sheet its workbook declared."""
    svc = _service(directory)
    try:
        report = svc.check_file_integrity(file_id)
    except (RegsheetError, ValueError) as e:
        raise click.ClickException(str(e))

    if report["ok"]:
        click.echo(f"OK: {len(report['found'])} sheet(s) match")
        return
    click.echo(f"MISMATCH: expected {len(report['expected'])} sheet(s), found {len(report['found'])}")
    for name in report["missing"]:
        click.echo(f"  missing:    {name}")
    for name in report["unexpected"]:
        click.echo(f"  unexpected: {name}")
    raise SystemExit(1)


# ---------------------------------------------------------------------------
# Edits and comments
# ---------------------------------------------------------------------------


@main.command()
@click.argument("directory", type=click.Path(exists=True))
@click.argument("sheet_id")
@click.option("--set", "items", multiple=True, required=True, help="Cell edit as ROW:HEADER=VALUE.")
def edit(directory: str, sheet_id: str, items: tuple[str, ...]) -> None:
    """Apply cell edits to SHEET_ID and save them together."""
    edits = _parse_edits(items)
    svc = _service(directory)
    try:
        svc.apply_edits(sheet_id, edits)
    except (RegsheetError, ValueError) as e:
        raise click.ClickException(str(e))
    click.echo(f"Saved {len(edits)} edit(s) to sheet {sheet_id}")


@main.command()
@click.argument("directory", type=click.Path(exists=True))
@click.argument("sheet_id")
@click.argument("text")
@click.option("--author", required=True, help="Reviewer name.")
@click.option("--row", "row_index", type=int, required=True, help="Row index the comment refers to.")
def comment(directory: str, sheet_id: str, text: str, author: str, row_index: int) -> None:
    """Add a reviewer comment to SHEET_ID."""
    svc = _service(directory)
    try:
        record = svc.create_comment(sheet_id, author, text, row_index)
    except (RegsheetError, ValueError) as e:
        raise click.ClickException(str(e))
    click.echo(f"Comment {record['id']} added")


@main.command()
@click.argument("directory", type=click.Path(exists=True))
@click.argument("sheet_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def comments(directory: str, sheet_id: str, as_json: bool) -> None:
    """List comments on SHEET_ID, oldest first."""
    svc = _service(directory)
    try:
        records = svc.list_comments(sheet_id)
    except (RegsheetError, ValueError) as e:
        raise click.ClickException(str(e))
    if as_json:
        _echo_json(records)
        return
    if not records:
        click.echo("No comments.")
        return
    for c in records:
        click.echo(f"[{c['created_at']}] row {c['row_index']}  {c['author']}: {c['comment']}")


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


@main.command()
@click.argument("directory", type=click.Path(exists=True))
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def summary(directory: str, as_json: bool) -> None:
    """Show upload activity for the store."""
    svc = _service(directory)
    data = svc.upload_summary()
    if as_json:
        _echo_json(data)
        return
    click.echo(f"Total files: {data['total']}")
    click.echo(f"This week:   {data['this_week']}")
    for label, counts in (("Model types", data["by_model_type"]), ("Build types", data["by_build_type"])):
        click.echo(f"{label}:")
        for name, count in sorted(counts.items()):
            click.echo(f"  {name:20s} {count}")
    click.echo("Weekly:")
    for w in data["weekly"]:
        click.echo(f"  {w['week_start']} ({w['week']})  {w['uploads']}")


# ---------------------------------------------------------------------------
# UI
# ---------------------------------------------------------------------------


@main.command()
@click.argument("directory", type=click.Path(exists=True))
@click.option("--host", default="127.0.0.1", help="Host to bind to.")
@click.option("--port", type=int, default=None, help="Port (auto-select if omitted).")
def ui(directory: str, host: str, port: int | None) -> None:
    """Serve the review API for DIRECTORY."""
    import socket

    import uvicorn

    from regsheet.ui.server import create_app

    store_dir = Path(directory)
    app = create_app(store_dir)

    if port is None:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind((host, 0))
            port = s.getsockname()[1]

    click.echo(f"Serving API at http://{host}:{port}/api")
    click.echo("Press Ctrl+C to stop")

    try:
        uvicorn.run(app, host=host, port=port, log_level="warning")
    except KeyboardInterrupt:
        click.echo("\nStopped.")


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@main.command("events")
@click.argument("directory", type=click.Path(exists=True))
@click.option("--level", default=None, type=click.Choice(["info", "warning", "error"]), help="Filter by level.")
@click.option("--type", "event_type", default=None, help="Filter by event type.")
@click.option("--file-id", default=None, help="Filter by file ID.")
@click.option("--sheet-id", default=None, help="Filter by sheet ID.")
@click.option("--limit", default=100, type=int, help="Maximum events to show.")
def events_cmd(
    directory: str,
    level: str | None,
    event_type: str | None,
    file_id: str | None,
    sheet_id: str | None,
    limit: int,
) -> None:
    """Show structured event log for DIRECTORY."""
    from regsheet.logging.sink import EventSink

    sink = EventSink(Path(directory))
    events = sink.read_global(
        level=level,
        event_type=event_type,
        file_id=file_id,
        sheet_id=sheet_id,
        limit=limit,
    )

    if not events:
        click.echo("No events found.")
        return

    for evt in events:
        ts = evt.get("ts", "")
        lvl = evt.get("level", "").upper()
        etype = evt.get("event_type", "")
        msg = evt.get("message", "")
        err = evt.get("error_code")
        line = f"[{ts}] {lvl:7s} {etype}: {msg}"
        if err:
            line += f"  ({err})"
        click.echo(line)
