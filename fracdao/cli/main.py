#!/usr/bin/env python3
"""
FracDAO CLI

Replays scripted ledger and governance operations against a fresh DAO on
a block clock, and shows the effective configuration.

Usage:
    fracdao replay <script.json> [--config FILE] [--json]
    fracdao show-config [--config FILE]

Script format:
    {
      "admin": "0xad...",
      "operations": [
        {"op": "mint", "asset": 1, "holder": "0xa1...", "fractions": 10,
         "rage_quit": true},
        {"op": "advance", "blocks": 2},
        {"op": "transfer", "asset": 1, "from": "0xa1...", "to": "0xb2...",
         "amount": 4, "expect": "InvariantViolation"}
      ]
    }

An operation carrying "expect" must fail with that error kind; any other
failure stops the replay with exit code 1.
"""

import json
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import click

from .. import __version__
from ..clock import BlockClock
from ..config import load_config
from ..dao import FractionalDAO
from ..exceptions import FracDAOError


def _op_mint(dao: FractionalDAO, op: Dict[str, Any]):
    record = dao.on_asset_minted(
        op["asset"],
        op["holder"],
        op["fractions"],
        op.get("royalty_rate", 0),
        op.get("rage_quit", False),
        name=op.get("name", ""),
        description=op.get("description", ""),
    )
    return record.to_dict()


def _op_eligibility(dao: FractionalDAO, op: Dict[str, Any]):
    return dao.set_asset_eligibility(op["caller"], op["asset"], op.get("eligible", True)).to_dict()


def _op_transfer(dao: FractionalDAO, op: Dict[str, Any]):
    return dao.transfer(op["asset"], op["from"], op["to"], op["amount"]).to_dict()


def _op_delegate(dao: FractionalDAO, op: Dict[str, Any]):
    return dao.delegate(op["asset"], op["from"], op["to"], op["amount"]).to_dict()


def _op_rage_quit(dao: FractionalDAO, op: Dict[str, Any]):
    return {"burnedAssets": dao.rage_quit(op["holder"])}


def _op_deposit(dao: FractionalDAO, op: Dict[str, Any]):
    return dao.deposit_royalty(op["asset"], op["amount"], op.get("depositor", "")).to_dict()


def _op_claim(dao: FractionalDAO, op: Dict[str, Any]):
    return {"claimed": dao.claim_royalty(op["asset"], op["holder"])}


def _op_propose(dao: FractionalDAO, op: Dict[str, Any]):
    proposal = dao.propose(op["asset"], op["proposer"], op.get("description", ""))
    return dao.proposal(proposal.id)


def _op_vote(dao: FractionalDAO, op: Dict[str, Any]):
    return dao.cast_vote(op["proposal"], op["support"], op["asset"], op["voter"]).to_dict()


def _op_execute(dao: FractionalDAO, op: Dict[str, Any]):
    return dao.execute(op["proposal"]).to_dict()


def _op_cancel(dao: FractionalDAO, op: Dict[str, Any]):
    return dao.cancel(op["proposal"], op["caller"]).to_dict()


def _op_advance(dao: FractionalDAO, op: Dict[str, Any]):
    return {"height": dao.clock.advance(op.get("blocks", 1))}


def _op_state(dao: FractionalDAO, op: Dict[str, Any]):
    return dao.proposal(op["proposal"])


def _op_power(dao: FractionalDAO, op: Dict[str, Any]):
    return {"holder": op["holder"], "power": dao.voting_power(op["holder"])}


def _op_position(dao: FractionalDAO, op: Dict[str, Any]):
    return dao.position(op["asset"], op["holder"]).to_dict()


OPERATIONS: Dict[str, Callable[[FractionalDAO, Dict[str, Any]], Any]] = {
    "mint": _op_mint,
    "eligibility": _op_eligibility,
    "transfer": _op_transfer,
    "delegate": _op_delegate,
    "rage_quit": _op_rage_quit,
    "deposit": _op_deposit,
    "claim": _op_claim,
    "propose": _op_propose,
    "vote": _op_vote,
    "execute": _op_execute,
    "cancel": _op_cancel,
    "advance": _op_advance,
    "state": _op_state,
    "power": _op_power,
    "position": _op_position,
}


def _load_script(path: Path) -> Dict[str, Any]:
    try:
        script = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise click.ClickException(f"Script is not valid JSON: {e}")
    if not isinstance(script, dict) or "admin" not in script:
        raise click.ClickException('Script must be an object with an "admin" field')
    if not isinstance(script.get("operations", []), list):
        raise click.ClickException('"operations" must be a list')
    return script


@click.group()
@click.version_option(version=__version__, prog_name="fracdao")
def cli():
    """FracDAO Command Line Interface

    Fractional ownership ledger and proposal lifecycle tooling.
    """
    pass


@cli.command("replay")
@click.argument("script_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--config", "-c", "config_path", type=click.Path(), help="Path to fracdao.toml")
@click.option("--json", "as_json", is_flag=True, help="Print the final state snapshot as JSON")
def replay_cmd(script_file: str, config_path: Optional[str], as_json: bool):
    """Replay a JSON operation script.

    Examples:

        fracdao replay scenario.json

        fracdao replay scenario.json --config fracdao.toml --json
    """
    try:
        config = load_config(config_path)
    except FracDAOError as e:
        raise click.ClickException(f"Invalid configuration: {e}")

    script = _load_script(Path(script_file))
    dao = FractionalDAO(
        script["admin"],
        config=config,
        clock=BlockClock(config.clock.start),
    )

    for index, op in enumerate(script.get("operations", []), start=1):
        name = op.get("op") if isinstance(op, dict) else None
        handler = OPERATIONS.get(name)
        if handler is None:
            raise click.ClickException(f"Operation {index}: unknown op {name!r}")
        expected = op.get("expect")
        try:
            result = handler(dao, op)
        except KeyError as e:
            raise click.ClickException(f"Operation {index} ({name}): missing field {e}")
        except FracDAOError as e:
            if expected == e.kind:
                click.echo(f"[{index}] {name} ✓ failed as expected: {e.kind}: {e}")
                continue
            click.echo(click.style(f"[{index}] {name} ✗ {e.kind}: {e}", fg="red"), err=True)
            raise SystemExit(1)

        if expected:
            click.echo(
                click.style(f"[{index}] {name} ✗ expected {expected} but succeeded", fg="red"),
                err=True,
            )
            raise SystemExit(1)
        click.echo(f"[{index}] {name} → {json.dumps(result, default=str, sort_keys=True)}")

    click.echo(click.style(f"Replayed {len(script.get('operations', []))} operations", fg="green"))
    if as_json:
        click.echo(json.dumps(dao.to_dict(), indent=2, default=str))


@cli.command("show-config")
@click.option("--config", "-c", "config_path", type=click.Path(), help="Path to fracdao.toml")
def show_config_cmd(config_path: Optional[str]):
    """Print the effective configuration (file + environment)."""
    try:
        config = load_config(config_path)
    except FracDAOError as e:
        raise click.ClickException(f"Invalid configuration: {e}")
    click.echo(json.dumps(config.to_dict(), indent=2))


def main():
    cli()


if __name__ == "__main__":
    main()
