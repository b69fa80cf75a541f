# MIT License
# Copyright (c) 2025 Hashborn

import argparse
import sys
import json
import requests
import os
from decimal import Decimal, InvalidOperation
from ..protocol.config.params import DECIMALS, DENOM

DEFAULT_NODE = "http://localhost:8000"

def get_node_url(args):
    return args.node or os.environ.get("PHASESTAKE_NODE", DEFAULT_NODE)

def to_units(amount: str) -> int:
    """Whole-token decimal string -> base units (exact)."""
    try:
        units = Decimal(amount) * (Decimal(10) ** DECIMALS)
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {amount}")
    if units != units.to_integral_value():
        raise ValueError(f"Amount {amount} has more than {DECIMALS} decimals")
    return int(units)

def from_units(units) -> str:
    return f"{Decimal(int(units)) / (Decimal(10) ** DECIMALS):f}"

def _fail(resp):
    try:
        detail = resp.json().get("detail", resp.text)
    except ValueError:
        detail = resp.text
    if isinstance(detail, dict):
        detail = f"{detail.get('error')}: {detail.get('message')}"
    print(f"Error: {detail}")
    sys.exit(1)

def _get(args, path, params=None):
    url = get_node_url(args)
    try:
        resp = requests.get(f"{url}{path}", params=params)
    except requests.RequestException as e:
        print(f"Connection error: {e}")
        sys.exit(1)
    if resp.status_code != 200:
        _fail(resp)
    return resp.json()

def _post(args, path, payload=None):
    url = get_node_url(args)
    try:
        resp = requests.post(f"{url}{path}", json=payload or {})
    except requests.RequestException as e:
        print(f"Connection error: {e}")
        sys.exit(1)
    if resp.status_code != 200:
        _fail(resp)
    return resp.json()

def _amount(args) -> int:
    if args.raw:
        return int(args.amount)
    try:
        return to_units(args.amount)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

def _print_receipt(data):
    print(f"{data['op']} confirmed at block {data['block_height']}")
    if data.get("participant"):
        print(f"Address: {data['participant']}")
    if int(data["amount"]):
        print(f"Amount: {from_units(data['amount'])} {DENOM}")
    if int(data["amount_paid"]):
        print(f"Paid out: {from_units(data['amount_paid'])} {DENOM}")
    if int(data["unfunded"]):
        print(f"Unfunded (left on balance): {from_units(data['unfunded'])} {DENOM}")
    print(f"Balance after: {from_units(data['balance_after'])} {DENOM}")
    settlement = data.get("settlement") or {}
    if int(settlement.get("total_rewarded", "0")):
        print(f"Settled blocks {settlement['from_block']} -> {settlement['to_block']}, "
              f"credited {from_units(settlement['total_rewarded'])} {DENOM}")

# --- Query Commands ---
def cmd_query_status(args):
    data = _get(args, "/status")
    phase = data["current_phase"]
    print(f"Network: {data['network_id']}")
    print(f"Block height: {data['block_height']}")
    print(f"Last settled block: {data['last_settled_block']} (epoch start {data['epoch_start_block']})")
    print(f"Total staked: {from_units(data['total_staked'])} {DENOM}")
    print(f"Reward pot: {from_units(data['reward_pot_remaining'])} {DENOM}")
    print(f"Participants: {data['participants']}")
    if phase["index"] < 0:
        print(f"Phase: schedule ended at block {data['horizon']}")
    else:
        print(f"Phase: #{phase['index']} rate {from_units(phase['rate'])} {DENOM}/block "
              f"until block {phase['cumulative_block_limit']}")

def cmd_query_balance(args):
    if args.settle:
        data = _post(args, f"/balance/{args.address}/settle")
    else:
        data = _get(args, f"/balance/{args.address}")
    print(f"Balance: {from_units(data['balance'])} {DENOM}")
    print(f"As of block: {data['last_settled_block']}")

def cmd_query_phases(args):
    data = _get(args, "/phases")
    print(f"Epoch start block: {data['epoch_start_block']}  Horizon: {data['horizon']}")
    print(f"{'#':<4} {'Rate/block':<24} {'Until block':<12}")
    print("-" * 42)
    for i, p in enumerate(data["phases"]):
        marker = " <" if i == data["current_phase"] else ""
        print(f"{i:<4} {from_units(p['rate']):<24} {p['cumulative_block_limit']:<12}{marker}")

def cmd_query_participants(args):
    data = _get(args, "/participants")
    print(f"Participants: {data['count']}")
    for addr in data["participants"]:
        print(addr)

def cmd_query_journal(args):
    params = {"limit": args.limit}
    if args.address:
        params["address"] = args.address
    data = _get(args, "/journal", params)
    print(json.dumps(data["entries"], indent=2))

# --- Tx Commands ---
def cmd_tx_deposit(args):
    amount = _amount(args)
    print(f"Depositing {from_units(amount)} {DENOM} for {args.address}...")
    _print_receipt(_post(args, "/deposit", {"address": args.address, "amount": str(amount)}))

def cmd_tx_withdraw(args):
    payload = {"address": args.address}
    if args.amount is not None:
        payload["amount"] = str(_amount(args))
    _print_receipt(_post(args, "/withdraw", payload))

def cmd_tx_settle(args):
    data = _post(args, "/settle")
    if data["blocks"] == 0:
        print(f"Already settled up to block {data['to_block']}")
        return
    print(f"Settled blocks {data['from_block']} -> {data['to_block']}")
    print(f"Credited {from_units(data['total_rewarded'])} {DENOM} to {len(data['rewards'])} participant(s)")

def cmd_tx_fund(args):
    amount = _amount(args)
    _print_receipt(_post(args, "/fund", {"address": args.address, "amount": str(amount)}))

# --- Dev Commands ---
def cmd_dev_faucet(args):
    amount = _amount(args)
    data = _post(args, "/faucet", {"address": args.address, "amount": str(amount)})
    print(f"Vault balance of {data['address']}: {from_units(data['balance'])} {DENOM}")

def cmd_dev_mine(args):
    data = _post(args, "/blocks/advance", {"blocks": args.blocks})
    print(f"Block height: {data['height']}")

def main():
    parser = argparse.ArgumentParser(description="PhaseStake Client CLI")
    parser.add_argument("--node", help=f"Node RPC URL (default: $PHASESTAKE_NODE or {DEFAULT_NODE})")

    subparsers = parser.add_subparsers(dest="command")

    # query
    p_query = subparsers.add_parser("query", help="Query ledger state")
    sp_query = p_query.add_subparsers(dest="subcommand")

    sp_query.add_parser("status", help="Ledger status")

    pq_bal = sp_query.add_parser("balance", help="Get participant balance")
    pq_bal.add_argument("address", help="Participant address")
    pq_bal.add_argument("--settle", action="store_true", help="Settle up to the current block first")

    sp_query.add_parser("phases", help="Show the reward schedule")
    sp_query.add_parser("participants", help="List participants")

    pq_journal = sp_query.add_parser("journal", help="Recent ledger operations")
    pq_journal.add_argument("--address", help="Only operations of this participant")
    pq_journal.add_argument("--limit", type=int, default=20, help="Number of entries")

    # tx
    p_tx = subparsers.add_parser("tx", help="Submit ledger operations")
    sp_tx = p_tx.add_subparsers(dest="subcommand")

    pt_dep = sp_tx.add_parser("deposit", help="Deposit stake")
    pt_dep.add_argument("address", help="Participant address")
    pt_dep.add_argument("amount", help=f"Amount in {DENOM}")
    pt_dep.add_argument("--raw", action="store_true", help="Amount is in base units")

    pt_wd = sp_tx.add_parser("withdraw", help="Withdraw stake (everything unless an amount is given)")
    pt_wd.add_argument("address", help="Participant address")
    pt_wd.add_argument("amount", nargs="?", help=f"Amount in {DENOM}")
    pt_wd.add_argument("--raw", action="store_true", help="Amount is in base units")

    sp_tx.add_parser("settle", help="Settle the ledger up to the current block")

    pt_fund = sp_tx.add_parser("fund", help="Top up the reward pot")
    pt_fund.add_argument("address", help="Funder address")
    pt_fund.add_argument("amount", help=f"Amount in {DENOM}")
    pt_fund.add_argument("--raw", action="store_true", help="Amount is in base units")

    # dev
    p_dev = subparsers.add_parser("dev", help="Devnet helpers")
    sp_dev = p_dev.add_subparsers(dest="subcommand")

    pd_faucet = sp_dev.add_parser("faucet", help="Mint vault tokens to an address")
    pd_faucet.add_argument("address", help="Recipient address")
    pd_faucet.add_argument("amount", help=f"Amount in {DENOM}")
    pd_faucet.add_argument("--raw", action="store_true", help="Amount is in base units")

    pd_mine = sp_dev.add_parser("mine", help="Advance the block height")
    pd_mine.add_argument("blocks", type=int, nargs="?", default=1, help="Number of blocks")

    args = parser.parse_args()

    if args.command == "query":
        if args.subcommand == "status": cmd_query_status(args)
        elif args.subcommand == "balance": cmd_query_balance(args)
        elif args.subcommand == "phases": cmd_query_phases(args)
        elif args.subcommand == "participants": cmd_query_participants(args)
        elif args.subcommand == "journal": cmd_query_journal(args)
        else: p_query.print_help()
    elif args.command == "tx":
        if args.subcommand == "deposit": cmd_tx_deposit(args)
        elif args.subcommand == "withdraw": cmd_tx_withdraw(args)
        elif args.subcommand == "settle": cmd_tx_settle(args)
        elif args.subcommand == "fund": cmd_tx_fund(args)
        else: p_tx.print_help()
    elif args.command == "dev":
        if args.subcommand == "faucet": cmd_dev_faucet(args)
        elif args.subcommand == "mine": cmd_dev_mine(args)
        else: p_dev.print_help()
    else:
        parser.print_help()

if __name__ == "__main__":
    main()
