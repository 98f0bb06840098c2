"""
intentguard CLI — Payment intent authorization for AI agents.

Commands:
    intentguard policy    Show the configured delegated policy
    intentguard serve     Run the HTTP API
    intentguard shell     Interactive propose/approve loop
    intentguard demo      Run a full demo flow

Engine state lives in memory, so proposals and approvals must happen
inside one `serve` or `shell` process.
"""

from __future__ import annotations

import logging
import shlex
import sys
from typing import Optional

import click
from eth_account import Account

from .config import EngineConfig, build_engine
from .directory import Recipient
from .engine import AuthorizationEngine
from .errors import ConfigError
from .intents import IntentStatus, PaymentIntent
from .money import format_sats
from .signing import DryRunSigner


SHELL_HELP = """Commands:
  propose <amount_sats> <recipient_id> [note]  - Propose a payment intent
  approve <intent_id>                          - Approve a payment intent
  pending                                      - Show pending intents
  intents                                      - Show all intents
  policy                                       - Show policy information
  spend                                        - Show daily spend
  quit                                         - Exit"""


def configure_logging(level: int = logging.INFO) -> None:
    """Attach a console handler to the root logger once."""
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return
    root_logger.setLevel(level)
    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    ))
    root_logger.addHandler(handler)


def _load_config() -> EngineConfig:
    try:
        return EngineConfig.from_env()
    except ConfigError as e:
        click.echo(f"❌ Invalid configuration: {e}", err=True)
        sys.exit(1)


def _build(config: EngineConfig) -> AuthorizationEngine:
    try:
        return build_engine(config)
    except ConfigError as e:
        click.echo(f"❌ Invalid configuration: {e}", err=True)
        sys.exit(1)


def _status_icon(intent: PaymentIntent) -> str:
    if intent.status == IntentStatus.EXECUTED:
        return "✅"
    if intent.status == IntentStatus.PENDING:
        return "⏳"
    return "❌"


def _echo_policy(engine: AuthorizationEngine) -> None:
    policy = engine.get_policy_snapshot()
    click.echo("📋 Policy Information:")
    click.echo(f"   Min single transaction: {format_sats(policy.min_tx_amount)}")
    click.echo(f"   Max single transaction: {format_sats(policy.max_tx_amount)}")
    click.echo(f"   Daily spend limit:      {format_sats(policy.daily_spend_limit)}")
    click.echo("   Allowed recipients:")
    if not policy.allowed_recipients:
        click.echo("     (none)")
    for recipient in policy.allowed_recipients.values():
        name = f" ({recipient.name})" if recipient.name else ""
        click.echo(f"     - {recipient.id}: {recipient.address}{name}")


def handle_command(engine: AuthorizationEngine, principal_id: str, source_id: str, line: str) -> bool:
    """Run one shell command. Returns False when the shell should exit."""
    try:
        parts = shlex.split(line)
    except ValueError as e:
        click.echo(f"❌ Could not parse command: {e}")
        return True
    if not parts:
        return True

    command, args = parts[0].lower(), parts[1:]

    if command in {"quit", "exit"}:
        click.echo("👋 Goodbye!")
        return False

    if command == "help":
        click.echo(SHELL_HELP)
    elif command == "propose":
        if len(args) < 2:
            click.echo("Usage: propose <amount_sats> <recipient_id> [note]")
            return True
        try:
            amount = int(args[0])
        except ValueError:
            click.echo(f"❌ Amount must be an integer number of sats: {args[0]}")
            return True
        note = " ".join(args[2:]) or None
        result = engine.propose(principal_id, source_id, args[1], amount, note)
        if result.allowed:
            click.echo(f"⏳ Intent created: {result.intent_id} ({format_sats(amount)} to {args[1]})")
            click.echo(f"💡 Tip: Use 'approve {result.intent_id}' to execute this payment")
        else:
            click.echo(f"❌ Denied: {result.reason}")
    elif command == "approve":
        if len(args) != 1:
            click.echo("Usage: approve <intent_id>")
            return True
        click.echo(f"🔄 Approving intent {args[0]}...")
        result = engine.confirm(principal_id, args[0])
        if result.executed:
            click.echo(f"✅ Payment executed! Ref: {result.transaction_ref}")
        else:
            click.echo(f"❌ Error ({result.error_code}): {result.error}")
    elif command == "pending":
        intents = engine.list_pending(principal_id)
        if not intents:
            click.echo("📝 No pending intents")
        else:
            click.echo(f"📝 Pending intents ({len(intents)}):")
            for intent in intents:
                click.echo(
                    f"   {intent.id}: {format_sats(intent.amount)} to {intent.recipient_id} "
                    f"({intent.created_at:%Y-%m-%d %H:%M:%S})"
                )
    elif command == "intents":
        intents = engine.list_intents(principal_id)
        if not intents:
            click.echo("📝 No intents found")
        else:
            click.echo(f"📝 All intents ({len(intents)}):")
            for intent in intents:
                click.echo(
                    f"   {_status_icon(intent)} {intent.id}: {format_sats(intent.amount)} to "
                    f"{intent.recipient_id} - {intent.status.value} "
                    f"({intent.created_at:%Y-%m-%d %H:%M:%S})"
                )
                if intent.transaction_ref:
                    click.echo(f"      Ref: {intent.transaction_ref}")
    elif command == "policy":
        _echo_policy(engine)
    elif command == "spend":
        spent = engine.get_daily_spend(principal_id)
        limit = engine.get_policy_snapshot().daily_spend_limit
        click.echo(f"💰 Daily spend: {spent} / {format_sats(limit)}")
    else:
        click.echo(f"Unknown command: {command}. Type 'help' for commands.")
    return True


# ── CLI ───────────────────────────────────────────────────────────

@click.group()
@click.version_option(version="0.1.0")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    help="Console log level",
)
def main(log_level: str):
    """intentguard — Payment intent authorization for AI agents."""
    configure_logging(getattr(logging, log_level.upper()))


@main.command()
def policy():
    """Show the delegated policy from the environment."""
    engine = _build(_load_config())
    _echo_policy(engine)


@main.command()
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", type=int, default=3000, help="Bind port")
def serve(host: str, port: int):
    """Run the HTTP API."""
    import uvicorn

    from .server import create_app

    config = _load_config()
    engine = _build(config)
    app = create_app(engine, default_source_id=config.source_id)
    click.echo(f"🚀 Payment intent service running on http://{host}:{port}")
    uvicorn.run(app, host=host, port=port)


@main.command()
@click.option("--principal", default=None, help="Principal id (default: env REAL_USER_ID)")
@click.option("--source", default=None, help="Funding source id (default: env REAL_WALLET_ID)")
def shell(principal: Optional[str], source: Optional[str]):
    """Interactive loop: propose, approve, and inspect intents."""
    config = _load_config()
    engine = _build(config)
    principal_id = principal or config.principal_id
    source_id = source or config.source_id

    click.echo("🤖 Payment Intent Shell")
    click.echo("=" * 24)
    click.echo(f"Principal: {principal_id}  Source: {source_id}")
    click.echo(SHELL_HELP)
    click.echo("")

    while True:
        try:
            line = click.prompt("💬 You", default="", show_default=False)
        except click.Abort:
            click.echo("")
            break
        if not handle_command(engine, principal_id, source_id, line):
            break
        click.echo("")


@main.command()
def demo():
    """Run a full demo of the propose → approve flow."""
    click.echo("🎬 intentguard Demo — Propose, Approve, Settle")
    click.echo("=" * 50)

    click.echo("\n1️⃣  Setting up policy (500–1000 sats/tx, 5000 sats/day)...")
    recipients = [
        Recipient(id="alice", address=Account.create().address, name="Alice"),
        Recipient(id="savings", address=Account.create().address, name="Savings Wallet"),
    ]
    config = EngineConfig(
        min_tx_amount=500,
        max_tx_amount=1000,
        daily_spend_limit=5000,
        recipients=recipients,
    )
    signer = DryRunSigner()
    engine = build_engine(config, signer=signer)
    principal_id, source_id = "demo-user", "demo-wallet"
    for r in recipients:
        click.echo(f"   Recipient {r.id}: {r.address}")

    click.echo("\n2️⃣  Agent proposes 700 sats to alice...")
    proposal = engine.propose(principal_id, source_id, "alice", 700, "Lunch")
    click.echo(f"   ⏳ {proposal.status}: {proposal.intent_id}")

    click.echo("\n3️⃣  User approves the intent...")
    confirmation = engine.confirm(principal_id, proposal.intent_id)
    click.echo(f"   ✅ {confirmation.status}: {confirmation.transaction_ref}")
    click.echo(f"   Daily spend: {format_sats(engine.get_daily_spend(principal_id))}")

    click.echo("\n4️⃣  Agent tries proposals outside the policy...")
    for amount, recipient_id in [(1200, "alice"), (400, "alice"), (700, "mallory")]:
        result = engine.propose(principal_id, source_id, recipient_id, amount)
        click.echo(f"   ❌ {amount} sats → {recipient_id}: {result.reason}")

    click.echo("\n5️⃣  Agent proposes and user approves until the daily cap...")
    while True:
        result = engine.propose(principal_id, source_id, "savings", 700)
        if not result.allowed:
            click.echo(f"   ❌ {result.reason}")
            break
        engine.confirm(principal_id, result.intent_id)
        click.echo(f"   ✅ 700 sats → savings (today: {format_sats(engine.get_daily_spend(principal_id))})")

    click.echo("\n6️⃣  Intent history...")
    for intent in engine.list_intents(principal_id):
        click.echo(f"   {_status_icon(intent)} {intent.id[:8]} {format_sats(intent.amount)} → {intent.recipient_id}")

    click.echo("\n" + "=" * 50)
    click.echo(f"🎉 Demo complete! {signer.call_count} transfers signed (dry run).")
    click.echo("   The agent could only propose; every transfer needed approval.")


if __name__ == "__main__":
    main()
