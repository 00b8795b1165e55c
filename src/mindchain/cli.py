"""MindChain CLI — Typer app for identities, request credentials, and workflows."""

from __future__ import annotations

import asyncio
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from mindchain import __version__
from mindchain._canonical import digest
from mindchain.client import CREClient, CREGatewayError
from mindchain.exceptions import MindchainError
from mindchain.identity import (
    generate_identity,
    get_default_identity,
    import_identity,
    list_identities,
    load_signer,
    set_default_identity,
)
from mindchain.payments import payment_required_response
from mindchain.signing import DEFAULT_TTL_SECONDS, LocalAccountSigner, authenticate, decode_token, verify_token
from mindchain.store import MindchainStore

console = Console()
app = typer.Typer(
    name="mindchain",
    help="MindChain — signed requests for CRE workflow gateways",
    no_args_is_help=True,
)

# --- Sub-apps ---
identity_app = typer.Typer(help="Manage signing identities (secp256k1 keys)")
app.add_typer(identity_app, name="identity")


def _get_store(db: Optional[Path] = None) -> MindchainStore:
    return MindchainStore(db_path=db)


def _fail(message: str) -> None:
    console.print(f"[red]{message}[/red]")
    raise typer.Exit(1)


def _resolve_identity(store: MindchainStore, identity: Optional[str]) -> dict:
    """Resolve a signing identity by address or name, else the default."""
    if identity:
        if identity.startswith("0x"):
            return store.get_identity(identity)
        row = store.find_identity_by_name(identity)
        if row is None:
            _fail(f"No identity named '{identity}'")
        return row
    default = store.get_default_identity()
    if default is None:
        _fail("No default identity. Create one with: mindchain identity create")
    return default


def _get_signer(
    db: Optional[Path],
    identity: Optional[str],
    passphrase: Optional[str],
) -> LocalAccountSigner:
    with _get_store(db) as store:
        row = _resolve_identity(store, identity)
        return load_signer(row["address"], store, passphrase)


def _load_json(file: Path) -> Any:
    """Read a JSON body from a file, or stdin when file is '-'."""
    if str(file) == "-":
        text = sys.stdin.read()
    else:
        if not file.exists():
            _fail(f"File not found: {file}")
        text = file.read_text(encoding="utf-8")
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        _fail(f"Invalid JSON in {file}: {e}")


def _format_ts(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


# --- Version ---

def _version_callback(value: bool):
    if value:
        console.print(f"mindchain {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(False, "--version", "-v", callback=_version_callback, is_eager=True),
):
    pass


# --- Identity Commands ---

@identity_app.command("create")
def identity_create(
    name: str = typer.Option(..., "--name", help="Human-readable name"),
    passphrase: Optional[str] = typer.Option(None, "--passphrase", help="Encrypt private key"),
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """Generate a new secp256k1 signing identity."""
    if not passphrase:
        console.print("[yellow]Warning: no passphrase. Private key will be stored unencrypted.[/yellow]")
    try:
        with _get_store(db) as store:
            identity = generate_identity(name, store, passphrase)
    except MindchainError as e:
        _fail(str(e))
    console.print(f"[green]Identity created:[/green] {identity.name}")
    console.print(f"  address: {identity.address}")


@identity_app.command("import")
def identity_import(
    name: str = typer.Option(..., "--name", help="Human-readable name"),
    private_key: str = typer.Option(
        ..., "--private-key", prompt=True, hide_input=True, help="Hex private key"
    ),
    passphrase: Optional[str] = typer.Option(None, "--passphrase", help="Encrypt private key"),
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """Import an existing private key as a signing identity."""
    try:
        with _get_store(db) as store:
            identity = import_identity(name, private_key, store, passphrase)
    except (MindchainError, ValueError) as e:
        _fail(str(e))
    console.print(f"[green]Identity imported:[/green] {identity.name}")
    console.print(f"  address: {identity.address}")


@identity_app.command("list")
def identity_list(
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """List all local identities."""
    try:
        with _get_store(db) as store:
            identities = list_identities(store)
    except MindchainError as e:
        _fail(str(e))
    if not identities:
        console.print("No identities found. Create one with: mindchain identity create")
        return

    table = Table(title="MindChain Identities")
    table.add_column("Default", width=3)
    table.add_column("Name")
    table.add_column("Encrypted")
    table.add_column("Address")

    for ident in identities:
        table.add_row(
            "*" if ident.is_default else "",
            ident.name,
            "yes" if ident.is_encrypted else "no",
            ident.address,
        )
    console.print(table)


@identity_app.command("export")
def identity_export(
    identity: Optional[str] = typer.Argument(None, help="Name or address (default identity if omitted)"),
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """Print the address of an identity for sharing."""
    try:
        with _get_store(db) as store:
            row = _resolve_identity(store, identity)
    except MindchainError as e:
        _fail(str(e))
    sys.stdout.write(row["address"] + "\n")


@identity_app.command("set-default")
def identity_set_default(
    address: str = typer.Argument(..., help="Address to set as default"),
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """Set an identity as the default signing identity."""
    try:
        with _get_store(db) as store:
            set_default_identity(address, store)
            current = get_default_identity(store)
    except MindchainError as e:
        _fail(str(e))
    console.print(f"[green]Default identity set:[/green] {current.address}")


# --- Credential Commands ---

@app.command("digest")
def digest_cmd(
    file: Path = typer.Argument(..., help="JSON body file ('-' for stdin)"),
):
    """Print the canonical SHA-256 digest of a JSON body."""
    body = _load_json(file)
    try:
        sys.stdout.write(digest(body) + "\n")
    except MindchainError as e:
        _fail(str(e))


@app.command("token")
def token_cmd(
    file: Path = typer.Argument(..., help="JSON body file ('-' for stdin)"),
    ttl: int = typer.Option(DEFAULT_TTL_SECONDS, "--ttl", help="Seconds until expiry"),
    identity: Optional[str] = typer.Option(None, "--identity", help="Override signing identity"),
    passphrase: Optional[str] = typer.Option(None, "--passphrase", help="Key passphrase"),
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """Mint a bearer token for a JSON body."""
    body = _load_json(file)
    try:
        signer = _get_signer(db, identity, passphrase)
        token = asyncio.run(authenticate(body, signer, ttl_seconds=ttl))
    except (MindchainError, ValueError) as e:
        _fail(f"Could not mint token: {e}")
    sys.stdout.write(token + "\n")


@app.command("decode")
def decode_cmd(
    token: str = typer.Argument(..., help="Bearer token"),
):
    """Show the header and claims of a token without verifying it."""
    try:
        header, payload, signature = decode_token(token)
    except MindchainError as e:
        _fail(str(e))

    table = Table(title="Credential")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("alg", header.alg)
    table.add_row("typ", header.typ)
    table.add_row("digest", payload.digest)
    table.add_row("iss", payload.iss)
    table.add_row("iat", f"{payload.iat} ({_format_ts(payload.iat)})")
    table.add_row("exp", f"{payload.exp} ({_format_ts(payload.exp)})")
    table.add_row("jti", payload.jti)
    table.add_row("signature", f"{len(signature)} bytes")
    console.print(table)


@app.command("verify")
def verify_cmd(
    token: str = typer.Argument(..., help="Bearer token"),
    file: Path = typer.Argument(..., help="JSON body the token was minted for ('-' for stdin)"),
    now: Optional[int] = typer.Option(None, "--now", help="Verify as of this Unix time"),
):
    """Verify a token against the body it claims to cover."""
    body = _load_json(file)
    try:
        payload = verify_token(token, body, now=now)
    except MindchainError as e:
        _fail(f"Verification failed: {e}")
    console.print("[green]Credential valid[/green]")
    console.print(f"  Issuer: {payload.iss}")
    console.print(f"  Expires: {_format_ts(payload.exp)}")
    console.print(f"  jti: {payload.jti}")


# --- Gateway Commands ---

@app.command("execute")
def execute_cmd(
    workflow_id: str = typer.Argument(..., help="CRE workflow ID"),
    input_json: str = typer.Option("{}", "--input", help="Workflow input as JSON"),
    gateway_url: Optional[str] = typer.Option(None, "--gateway-url", help="CRE gateway URL"),
    identity: Optional[str] = typer.Option(None, "--identity", help="Override signing identity"),
    passphrase: Optional[str] = typer.Option(None, "--passphrase", help="Key passphrase"),
    db: Optional[Path] = typer.Option(None, "--db", hidden=True),
):
    """Sign and send a workflows.execute request to a CRE gateway."""
    try:
        workflow_input = json.loads(input_json)
    except json.JSONDecodeError as e:
        _fail(f"Invalid --input JSON: {e}")

    try:
        signer = _get_signer(db, identity, passphrase)
        client = CREClient(signer, gateway_url=gateway_url)
        result = asyncio.run(client.execute_workflow(workflow_id, workflow_input))
    except CREGatewayError as e:
        _fail(f"CRE gateway request failed: {e}")
    except MindchainError as e:
        _fail(str(e))
    sys.stdout.write(json.dumps(result, indent=2) + "\n")


@app.command("payment-required")
def payment_required_cmd(
    url: str = typer.Option(..., "--url", help="Resource URL"),
    price: float = typer.Option(..., "--price", help="Price in USD"),
    pay_to: str = typer.Option(..., "--pay-to", help="Recipient address"),
    description: Optional[str] = typer.Option(None, "--description"),
):
    """Print the x402 402-response body for a resource."""
    try:
        body = payment_required_response(url, price, pay_to, description=description)
    except ValueError as e:
        _fail(str(e))
    sys.stdout.write(json.dumps(body, indent=2) + "\n")


# --- Entry point for typer ---

def _cli():
    app()


if __name__ == "__main__":
    _cli()
