"""Tollgate CLI — drive workflow actions against a running gateway."""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from tollgate.payments import PAYMENT_HEADER, PaymentProof, encode_payment_header

app = typer.Typer(
    name="tollgate",
    help="Tollgate — policy-gated action gateway",
    no_args_is_help=True,
    add_completion=False,
)

console = Console()

DEFAULT_URL = "http://localhost:8000"


def _get_client(base_url: str, api_key: str | None) -> httpx.Client:
    headers = {}
    if api_key:
        headers["X-API-Key"] = api_key
    # Deploys wait on block confirmations
    return httpx.Client(base_url=base_url, headers=headers, timeout=900.0)


def _build_payload(
    action: str,
    user_address: str,
    network: str,
    prompt: str,
    code_file: Path | None,
    to_address: str,
    amount: str,
) -> dict:
    payload: dict = {"action": action, "userAddress": user_address, "network": network}
    if prompt:
        payload["prompt"] = prompt
    if code_file is not None:
        payload["code"] = code_file.read_text(encoding="utf-8")
    if to_address:
        payload["toAddress"] = to_address
    if amount:
        payload["amount"] = amount
    return payload


def _render_payment_required(details: dict) -> None:
    table = Table(show_header=False, box=None)
    table.add_row("[dim]challenge[/dim]", details.get("challengeId", ""))
    table.add_row("[dim]amount[/dim]", f"{details.get('amount', '')} {details.get('currency', '')}")
    table.add_row("[dim]expires at[/dim]", str(details.get("expiresAt", "")))
    console.print(Panel(table, title="Payment required", border_style="yellow"))
    console.print("Sign this message with the calling wallet (personal_sign):")
    console.print(Panel(details.get("message", ""), border_style="dim"))
    console.print(
        "Then resend the same request with "
        f"[cyan]--payment $(tollgate proof {details.get('challengeId', '<id>')} <signature> <address>)[/cyan]"
    )


def _render_success(action: str, data: dict) -> None:
    if action == "research":
        console.print(Markdown(data.get("result", "")))
    elif action == "generate":
        console.print(Syntax(data.get("code", ""), "solidity", line_numbers=True))
    elif action == "audit":
        console.print(Markdown(data.get("report", "")))
    elif action == "deploy":
        console.print(f"[green]✓[/green] Contract address: [cyan]{data.get('address')}[/cyan]")
        if data.get("estimatedCost"):
            console.print(f"[dim]estimated cost: {data['estimatedCost']}[/dim]")
    elif action == "transfer":
        console.print(f"[green]✓[/green] Transaction: [cyan]{data.get('txHash')}[/cyan]")
    else:
        console.print_json(json.dumps(data))


@app.command()
def call(
    action: str = typer.Argument(..., help="research, generate, audit, deploy, or transfer"),
    user_address: str = typer.Option(..., "--from", "-f", envvar="TOLLGATE_USER_ADDRESS", help="Caller wallet"),
    base_url: str = typer.Option(DEFAULT_URL, "--url", "-u", envvar="TOLLGATE_URL"),
    api_key: str = typer.Option("", "--api-key", "-k", envvar="TOLLGATE_API_KEY"),
    network: str = typer.Option("testnet", "--network", "-n", help="testnet or mainnet"),
    prompt: str = typer.Option("", "--prompt", "-p"),
    code_file: Path | None = typer.Option(None, "--code", "-c", help="Path to contract source", exists=True),
    to_address: str = typer.Option("", "--to"),
    amount: str = typer.Option("", "--amount"),
    payment: str = typer.Option("", "--payment", help="X-PAYMENT header value from `tollgate proof`"),
    raw: bool = typer.Option(False, "--raw", help="Output raw JSON response"),
) -> None:
    """Send one action to the gateway."""
    client = _get_client(base_url, api_key or None)
    payload = _build_payload(action, user_address, network, prompt, code_file, to_address, amount)
    headers = {PAYMENT_HEADER: payment} if payment else {}

    try:
        resp = client.post("/api/agent", json=payload, headers=headers)
    except httpx.ConnectError:
        console.print(f"[red]Error:[/red] Cannot connect to Tollgate at {base_url}")
        raise typer.Exit(1)

    try:
        data = resp.json()
    except ValueError:
        console.print(f"[red]Error {resp.status_code}:[/red] {resp.text}")
        raise typer.Exit(1)

    if raw:
        console.print_json(json.dumps(data))
        raise typer.Exit(0 if resp.status_code == 200 else 1)

    if resp.status_code == 402:
        _render_payment_required(data.get("paymentDetails", {}))
        raise typer.Exit(2)

    if resp.status_code != 200:
        console.print(f"[red]Error {resp.status_code}:[/red] {data.get('error', resp.text)}")
        if data.get("logs"):
            console.print(Panel(data["logs"], title="toolchain output", border_style="red"))
        raise typer.Exit(1)

    _render_success(action, data)


@app.command()
def proof(
    challenge_id: str = typer.Argument(..., help="challengeId from the 402 response"),
    signature: str = typer.Argument(..., help="Signature over the challenge message"),
    signer: str = typer.Argument(..., help="Address that signed"),
) -> None:
    """Print an X-PAYMENT header value for a signed challenge."""
    typer.echo(encode_payment_header(PaymentProof(challenge_id=challenge_id, signature=signature, signer=signer)))


@app.command()
def status(
    base_url: str = typer.Option(DEFAULT_URL, "--url", "-u", envvar="TOLLGATE_URL"),
) -> None:
    """Check gateway health."""
    try:
        resp = httpx.get(f"{base_url}/health", timeout=10.0)
        resp.raise_for_status()
    except httpx.HTTPError as e:
        console.print(f"[red]✗[/red] Tollgate is not reachable at {base_url}: {e}")
        raise typer.Exit(1)

    data = resp.json()
    table = Table(title="Tollgate", show_header=False)
    table.add_row("version", data.get("version", "?"))
    table.add_row("uptime", f"{data.get('uptime_seconds', 0)}s")
    table.add_row("actions", ", ".join(data.get("actions", [])))
    payments = data.get("payments", {})
    table.add_row("gated", ", ".join(payments.get("gated_actions", [])) or "-")
    table.add_row("open challenges", str(payments.get("outstanding_challenges", 0)))
    cap = data.get("spend_cap", {})
    table.add_row("spend cap", f"{cap.get('ceiling', '?')} {cap.get('unit', '')}")
    console.print(table)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host"),
    port: int = typer.Option(8000, "--port"),
    reload: bool = typer.Option(False, "--reload"),
) -> None:
    """Start the Tollgate server (for development)."""
    import uvicorn
    console.print(Panel("Starting Tollgate server...", border_style="blue"))
    uvicorn.run(
        "tollgate.main:app",
        host=host,
        port=port,
        reload=reload,
    )


@app.command()
def version() -> None:
    """Show Tollgate version."""
    from tollgate import __version__
    console.print(f"Tollgate v{__version__}")


def main() -> None:
    """Entrypoint."""
    app()


if __name__ == "__main__":
    main()
