"""
Command-Line Interface for the shielded pool ledger

Provides key generation, protocol information and an end-to-end demonstration
against an in-memory ledger.
"""

import json
import logging
import sys

import click

from shielded_pool.protocol import config, feature_flags
from shielded_pool.protocol.adapters.mock_adapter import MockProofSystem
from shielded_pool.protocol.assembler import TransactionAssembler
from shielded_pool.protocol.exceptions import ShieldedPoolError
from shielded_pool.protocol.keypair import Keypair

VERSION = "0.1.0"


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@click.group()
@click.version_option(version=VERSION)
@click.option('--verbose', is_flag=True, help='Enable debug logging')
def main(verbose):
    """
    Shielded pool ledger

    Private balances as notes, commitments and nullifiers over a Merkle
    accumulator, with a bridge to an origin domain.
    """
    _configure_logging(verbose)


@main.command()
@click.option('--json', 'as_json', is_flag=True, help='Print the keypair as JSON')
def keygen(as_json):
    """
    Generate a new keypair and print its shielded address.

    The private key is printed too; keep it secret.
    """
    keypair = Keypair()
    if as_json:
        click.echo(json.dumps({
            "privkey": hex(keypair.privkey),
            "pubkey": hex(keypair.pubkey),
            "address": keypair.address(),
        }, indent=2))
        return
    click.echo(f"Address:     {keypair.address()}")
    click.echo(f"Public key:  {hex(keypair.pubkey)}")
    click.echo(f"Private key: {hex(keypair.privkey)}")


@main.command()
def info():
    """Show protocol constants and the active proof backend."""
    try:
        backend = feature_flags.get_backend_type()
    except ValueError as e:
        click.echo(click.style(f"✗ {e}", fg="red"), err=True)
        sys.exit(1)

    click.echo(click.style("Shielded pool protocol", fg="cyan", bold=True))
    click.echo(f"  Field size:          {config.FIELD_SIZE}")
    click.echo(f"  Tree height:         {config.MERKLE_TREE_HEIGHT}")
    click.echo(f"  Root history (K):    {config.ROOT_HISTORY_SIZE}")
    click.echo(f"  Input arities:       {', '.join(str(a) for a in config.INPUT_ARITIES)}")
    click.echo(f"  Outputs:             {config.OUTPUT_COUNT}")
    click.echo(f"  Hash:                {config.HASH_FUNCTION}")
    click.echo(f"  Serialization:       {config.SERIALIZATION_FORMAT} v{config.PAYLOAD_VERSION}")
    click.echo(f"  Proof backend:       {backend}")


@main.command()
@click.option('--height', type=int, default=10, help='Tree height for the demo ledger (default: 10)')
@click.option('--amount', type=int, default=10_000_000, help='Initial deposit (default: 10000000)')
def demo(height, amount):
    """
    Run the deposit -> transfer -> L1 withdrawal scenario.

    Uses an in-memory ledger and the mock proof system.

    Examples:

        shielded-pool demo

        shielded-pool --verbose demo --height 5
    """
    from shielded_pool.bridge import (
        BridgeReconciler,
        FallbackCustodian,
        InMemoryBridgeChannel,
        L1Unwrapper,
    )
    from shielded_pool.client import ShieldedWallet
    from shielded_pool.ledger import LedgerState

    recipient = "0x" + "11" * 20
    multisig = "0x" + "99" * 20
    if amount < 10:
        click.echo(click.style("✗ amount must be at least 10", fg="red"), err=True)
        sys.exit(1)
    sent = amount * 3 // 10
    withdrawn = sent * 2 // 3

    try:
        proof_system = MockProofSystem()
        ledger = LedgerState(verifier=proof_system, height=height)
        channel = InMemoryBridgeChannel()
        reconciler = BridgeReconciler(ledger, FallbackCustodian(multisig), channel)
        assembler = TransactionAssembler(prover=proof_system)
        alice = ShieldedWallet(ledger, assembler=assembler)
        bob = ShieldedWallet(ledger, assembler=assembler)

        click.echo("\n" + "=" * 70)
        click.echo(click.style("Shielded Pool Demonstration", fg="cyan", bold=True))
        click.echo("=" * 70)

        alice.deposit(amount)
        click.echo(f"\n1. Alice deposits {amount}")
        click.echo(f"   Leaves: {ledger.size}, Alice balance: {alice.balance()}")

        alice.transfer(bob.address, sent)
        click.echo(f"\n2. Alice sends {sent} to Bob")
        click.echo(f"   Alice balance: {alice.balance()}, Bob balance: {bob.balance()}")

        bob.withdraw(withdrawn, recipient, is_l1_withdrawal=True)
        calls = reconciler.relay_withdrawals()
        click.echo(f"\n3. Bob withdraws {withdrawn} to {recipient} on L1")
        for call in calls:
            click.echo(f"   Bridge call: recipient={call.recipient} amount={call.amount} fee={call.fee}")

        unwrapper = L1Unwrapper(FallbackCustodian(multisig))
        channel.deliver(unwrapper)
        click.echo(f"   Delivered on L1: {unwrapper.balances.get(recipient, 0)}")

        click.echo(f"\n{click.style('✓ Demonstration complete', fg='green')}")
        click.echo(f"  Pool balance:     {ledger.pool_balance}")
        click.echo(f"  Spent nullifiers: {len(ledger.get_nullifier_events())}")
        click.echo(f"  Bob balance:      {bob.balance()}")
        click.echo("=" * 70 + "\n")
    except ShieldedPoolError as e:
        click.echo(click.style(f"\n✗ Error: {e}", fg="red"), err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
