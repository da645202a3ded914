"""Typer CLI for tk-proxy — capture, combine, submit, server and client modes."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Annotated, NoReturn

import typer
from result import Err

from tkproxy.config import AUTH_TOKEN_ENV, ClientConfig, ServerConfig, generate_auth_token
from tkproxy.errors import TkProxyError

app = typer.Typer(
    name="tk-proxy",
    help="Capture, combine and submit tokscale usage from multiple machines.",
    no_args_is_help=True,
)


def _fail(message: str, code: int = 1) -> NoReturn:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(code)


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
) -> None:
    """tk-proxy — proxy, aggregation and daily submission for tokscale."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )


@app.command(
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
)
def capture(
    command: Annotated[list[str], typer.Argument(help="Command to run, after --")],
    output: Annotated[
        Path | None, typer.Option("--output", "-o", help="Capture file to write")
    ] = None,
) -> None:
    """Run a command and save its output (and tokscale payload) as JSON."""
    from tkproxy.services.capture import capture_command, default_capture_file
    from tkproxy.services.report_files import write_json

    try:
        document = asyncio.run(capture_command(command))
        written = write_json(output or default_capture_file(), document.to_wire())
    except TkProxyError as exc:
        _fail(str(exc))
    typer.echo(f"Capture saved: {written}", err=True)
    raise typer.Exit(document.command.exit_code)


@app.command()
def combine(
    inputs: Annotated[list[Path], typer.Argument(help="Report or capture files")],
    output: Annotated[
        Path | None, typer.Option("--output", "-o", help="Combined file to write")
    ] = None,
) -> None:
    """Merge reports from several machines into one file."""
    from tkproxy.services.report_files import combine_files, default_combined_file, summary_line

    result = combine_files(inputs, output or default_combined_file())
    if isinstance(result, Err):
        _fail(result.err_value)
    written, combined = result.ok_value
    typer.echo(f"Combined {len(inputs)} payloads into {written}")
    typer.echo(f"Summary: {summary_line(combined)}")


@app.command()
def submit(
    input_file: Annotated[Path, typer.Option("--input", "-i", help="Report file to submit")],
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Only print the summary")] = False,
) -> None:
    """Submit one report file to tokscale."""
    from tkproxy.services.report_files import read_report_file, summary_line
    from tkproxy.services.tokscale import TokscaleSubmitter

    try:
        report = read_report_file(input_file)
        if dry_run:
            typer.echo("Dry run - not submitting.")
            typer.echo(f"Payload summary: {summary_line(report)}")
            return
        response = asyncio.run(TokscaleSubmitter().submit(report))
    except TkProxyError as exc:
        _fail(str(exc))

    typer.echo("Submit success.")
    if response.submission_id:
        typer.echo(f"Submission ID: {response.submission_id}")
    if response.metrics is not None:
        tokens = response.metrics.total_tokens or 0
        cost = response.metrics.total_cost or 0
        typer.echo(f"Server metrics: {tokens:,.0f} tokens, ${cost:,.2f}")


@app.command()
def server(
    host: Annotated[str, typer.Option("--host")] = "0.0.0.0",
    port: Annotated[int, typer.Option("--port")] = 8787,
    data_dir: Annotated[Path, typer.Option("--data-dir")] = Path(".tk-proxy"),
    submit_hour_utc: Annotated[int, typer.Option("--submit-hour-utc")] = 2,
    auth_token: Annotated[
        str | None, typer.Option("--auth-token", envvar=AUTH_TOKEN_ENV, show_envvar=True)
    ] = None,
    no_auth: Annotated[
        bool, typer.Option("--no-auth", help="Disable auth (trusted networks only)")
    ] = False,
    check_interval: Annotated[str, typer.Option("--check-interval")] = "10m",
    dry_run_submit: Annotated[bool, typer.Option("--dry-run-submit")] = False,
) -> None:
    """Accept client captures and submit one combined report per UTC day."""
    from tkproxy.server.app import run_server
    from tkproxy.services.schedule import parse_duration

    token = None if no_auth else auth_token
    if not no_auth and not token:
        token = generate_auth_token()
        typer.echo(f"[server] generated auth token: {token}")
        typer.echo(f"[server] client env hint: {AUTH_TOKEN_ENV}={token}")
    if no_auth:
        typer.echo("[server] auth disabled via --no-auth")

    try:
        config = ServerConfig(
            host=host,
            port=port,
            data_dir=data_dir,
            submit_hour_utc=submit_hour_utc,
            auth_token=token,
            no_auth=no_auth,
            check_interval_ms=parse_duration(check_interval),
            dry_run_submit=dry_run_submit,
        )
    except TkProxyError as exc:
        _fail(str(exc))
    run_server(config)


@app.command()
def client(
    server_url: Annotated[str, typer.Argument(help="Ingestion server base URL")],
    client_id: Annotated[str | None, typer.Option("--client-id")] = None,
    interval: Annotated[str, typer.Option("--interval")] = "4h",
    jitter: Annotated[str, typer.Option("--jitter")] = "1h",
    auth_token: Annotated[
        str | None, typer.Option("--auth-token", envvar=AUTH_TOKEN_ENV, show_envvar=True)
    ] = None,
    no_auth: Annotated[bool, typer.Option("--no-auth")] = False,
    once: Annotated[bool, typer.Option("--once", help="Upload once and exit")] = False,
    request_timeout: Annotated[str, typer.Option("--request-timeout")] = "30s",
) -> None:
    """Periodically upload this machine's tokscale report to a server."""
    from tkproxy.services.schedule import parse_duration
    from tkproxy.services.uploader import run_client

    try:
        extra = {"client_id": client_id} if client_id else {}
        config = ClientConfig(
            server_url=server_url,
            interval_ms=parse_duration(interval),
            jitter_ms=parse_duration(jitter),
            auth_token=None if no_auth else auth_token,
            no_auth=no_auth,
            once=once,
            request_timeout_ms=parse_duration(request_timeout),
            **extra,
        )
    except TkProxyError as exc:
        _fail(str(exc))
    if no_auth:
        typer.echo("[client] auth disabled via --no-auth")
    asyncio.run(run_client(config))
