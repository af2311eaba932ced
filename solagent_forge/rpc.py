"""
RPC query tools.

Each tool validates its input, makes its upstream call(s) through a
short-lived ``AsyncClient`` and normalizes the response. Invalid input is
rejected before any connection is opened; every upstream problem
(timeouts, unreachable endpoints, RPC errors, malformed responses) is
reported as a failed result instead of escaping to the dispatcher.
"""

import asyncio
import base64
import json
import zlib
from typing import Any, Dict, List, Optional, Tuple

import httpx
from mcp.server.fastmcp.utilities.logging import get_logger
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.types import MemcmpOpts
from solders.pubkey import Pubkey
from solders.signature import Signature

from . import config
from .derivation import compute_discriminator, decode_idl_account, idl_address, to_snake_case
from .errors import UpstreamFailure, ValidationFailure
from .models import (
    FundKeypairArgs,
    GetAccountInfoArgs,
    GetBalanceArgs,
    GetDeploymentStatusArgs,
    GetProgramAccountsArgs,
    ParseTransactionArgs,
    VerifyOnchainDiscriminatorsArgs,
)
from .results import ok

logger = get_logger(__name__)

MAX_LOG_MESSAGES = 20
DATA_PREVIEW_LEN = 100


# --- Helpers ---

def _parse_pubkey(value: str, field: str = "publicKey") -> Pubkey:
    try:
        return Pubkey.from_string(value)
    except ValueError as e:
        raise ValidationFailure("Invalid Solana public key format", details=str(e), **{field: value})


def _client(endpoint: str) -> AsyncClient:
    return AsyncClient(endpoint, commitment=Confirmed, timeout=config.RPC_TIMEOUT)


async def _bounded(coro):
    """Awaits ``coro`` with the configured per-call timeout."""
    return await asyncio.wait_for(coro, timeout=config.RPC_TIMEOUT)


def _upstream_failure(action: str, error: Exception, **context: Any) -> UpstreamFailure:
    if isinstance(error, (asyncio.TimeoutError, httpx.TimeoutException)):
        message = f"Failed to {action}: request timed out after {config.RPC_TIMEOUT:g}s"
    else:
        message = f"Failed to {action}: {str(error) or type(error).__name__}"
    logger.warning(message)
    return UpstreamFailure(
        message,
        details="Failed to connect to RPC or fetch data",
        **context,
    )


def _account_summary(account) -> Dict[str, Any]:
    return {
        "lamports": account.lamports,
        "owner": str(account.owner),
        "executable": account.executable,
        "rentEpoch": account.rent_epoch,
    }


# --- Tools ---

async def get_balance(args: GetBalanceArgs) -> Dict[str, Any]:
    """Gets the SOL balance of a public key."""
    pubkey = _parse_pubkey(args.public_key)
    endpoint = config.resolve_endpoint(args.cluster, args.rpc_url)
    logger.debug(f"get_balance {pubkey} via {endpoint}")
    try:
        async with _client(endpoint) as client:
            resp = await _bounded(client.get_balance(pubkey))
        lamports = resp.value
    except Exception as e:
        raise _upstream_failure("fetch balance", e, publicKey=args.public_key, cluster=args.cluster)

    sol = lamports / config.LAMPORTS_PER_SOL
    return ok(
        publicKey=args.public_key,
        cluster=args.cluster,
        balance={
            "lamports": lamports,
            "sol": sol,
            "formatted": f"{sol:.9f} SOL",
        },
    )


async def get_account_info(args: GetAccountInfoArgs) -> Dict[str, Any]:
    """Fetches an account. A missing account is a success with ``exists`` false."""
    pubkey = _parse_pubkey(args.public_key)
    endpoint = config.resolve_endpoint(args.cluster, args.rpc_url)
    try:
        async with _client(endpoint) as client:
            if args.encoding == "jsonParsed":
                resp = await _bounded(client.get_account_info_json_parsed(pubkey))
            else:
                resp = await _bounded(client.get_account_info(pubkey, encoding="base64"))
        account = resp.value
    except Exception as e:
        raise _upstream_failure("fetch account info", e, publicKey=args.public_key, cluster=args.cluster)

    if account is None:
        return ok(
            exists=False,
            publicKey=args.public_key,
            cluster=args.cluster,
            message="Account does not exist or has not been initialized",
        )

    info = _account_summary(account)
    data = account.data
    if isinstance(data, (bytes, bytearray)):
        info["dataLength"] = len(data)
        info["data"] = base64.b64encode(bytes(data)).decode("ascii")
    else:
        parsed = json.loads(data.to_json())
        info["dataLength"] = parsed.get("space")
        info["data"] = parsed
    return ok(exists=True, publicKey=args.public_key, cluster=args.cluster, accountInfo=info)


def _rpc_filters(args: GetProgramAccountsArgs) -> List[Any]:
    filters: List[Any] = []
    for f in args.filters:
        if f.data_size is not None:
            filters.append(f.data_size)
        elif f.memcmp is not None:
            filters.append(MemcmpOpts(offset=f.memcmp.offset, bytes=f.memcmp.bytes))
    return filters


async def get_program_accounts(args: GetProgramAccountsArgs) -> Dict[str, Any]:
    """Lists accounts owned by a program, truncated to ``limit``."""
    program_key = _parse_pubkey(args.program_id, "programId")
    endpoint = config.resolve_endpoint(args.cluster, args.rpc_url)
    filters = _rpc_filters(args)
    try:
        async with _client(endpoint) as client:
            resp = await _bounded(
                client.get_program_accounts(program_key, encoding="base64", filters=filters or None)
            )
        keyed_accounts = list(resp.value)
    except Exception as e:
        raise _upstream_failure("fetch program accounts", e, programId=args.program_id, cluster=args.cluster)

    limited = keyed_accounts[:args.limit]
    accounts = []
    for keyed in limited:
        account = keyed.account
        encoded = base64.b64encode(bytes(account.data)).decode("ascii")
        if len(encoded) > DATA_PREVIEW_LEN:
            encoded = encoded[:DATA_PREVIEW_LEN] + "..."
        accounts.append({
            "publicKey": str(keyed.pubkey),
            **_account_summary(account),
            "dataLength": len(account.data),
            "data": encoded,
        })
    return ok(
        programId=args.program_id,
        cluster=args.cluster,
        totalAccounts=len(keyed_accounts),
        returnedAccounts=len(accounts),
        truncated=len(keyed_accounts) > len(accounts),
        accounts=accounts,
    )


async def get_deployment_status(args: GetDeploymentStatusArgs) -> Dict[str, Any]:
    """Checks whether a program is deployed, using only RPC calls."""
    program_key = _parse_pubkey(args.program_id, "programId")
    endpoint = config.resolve_endpoint(args.cluster, args.rpc_url)
    try:
        async with _client(endpoint) as client:
            resp = await _bounded(client.get_account_info(program_key))
        account = resp.value
    except Exception as e:
        raise _upstream_failure("fetch program data", e, programId=args.program_id, cluster=args.cluster)

    if account is None:
        return ok(
            programId=str(program_key),
            cluster=args.cluster,
            deployed=False,
            message="Program account not found on-chain",
        )
    if not account.executable:
        return ok(
            programId=str(program_key),
            cluster=args.cluster,
            deployed=False,
            message="Account exists but is not executable; this is not a Solana program",
        )
    return ok(
        programId=str(program_key),
        cluster=args.cluster,
        deployed=True,
        executable=True,
        owner=str(account.owner),
        lamports=account.lamports,
        dataSize=len(account.data),
        rentEpoch=account.rent_epoch,
    )


def _split_transaction(tx: Dict[str, Any]) -> Tuple[Dict[str, Any], Optional[Dict[str, Any]]]:
    """Returns the (transaction, meta) pair of an encoded confirmed transaction."""
    inner = tx.get("transaction") or {}
    if "meta" not in tx and "meta" in inner:
        return inner.get("transaction") or {}, inner.get("meta")
    return inner, tx.get("meta")


def _account_key(key: Any) -> Dict[str, Any]:
    if isinstance(key, str):
        return {"pubkey": key, "signer": False, "writable": False}
    return {
        "pubkey": key.get("pubkey"),
        "signer": bool(key.get("signer")),
        "writable": bool(key.get("writable")),
    }


def _instruction(ix: Dict[str, Any]) -> Dict[str, Any]:
    if "parsed" in ix:
        return {
            "type": "parsed",
            "program": ix.get("program"),
            "programId": ix.get("programId", "unknown"),
            "parsed": ix["parsed"],
        }
    return {
        "type": "raw",
        "programId": ix.get("programId"),
        "programIdIndex": ix.get("programIdIndex"),
        "accounts": ix.get("accounts", []),
        "data": ix.get("data"),
    }


def summarize_transaction(tx: Dict[str, Any]) -> Dict[str, Any]:
    """Condenses a ``jsonParsed`` transaction into the parse_transaction output."""
    transaction, meta = _split_transaction(tx)
    meta = meta or {}
    message = transaction.get("message") or {}
    accounts = [_account_key(key) for key in message.get("accountKeys", [])]

    pre_balances = meta.get("preBalances")
    post_balances = meta.get("postBalances")
    balance_changes = None
    if pre_balances is not None and post_balances is not None:
        balance_changes = [
            {
                "account": accounts[idx]["pubkey"] if idx < len(accounts) else "unknown",
                "change": post - pre,
                "pre": pre,
                "post": post,
            }
            for idx, (pre, post) in enumerate(zip(pre_balances, post_balances))
        ]

    err = meta.get("err")
    return {
        "slot": tx.get("slot"),
        "blockTime": tx.get("blockTime"),
        "fee": meta.get("fee"),
        "status": "failed" if err else "success",
        "error": err,
        "computeUnitsConsumed": meta.get("computeUnitsConsumed"),
        "logMessages": (meta.get("logMessages") or [])[:MAX_LOG_MESSAGES],
        "accounts": accounts,
        "instructions": [_instruction(ix) for ix in message.get("instructions", [])],
        "recentBlockhash": message.get("recentBlockhash"),
        "preBalances": pre_balances,
        "postBalances": post_balances,
        "balanceChanges": balance_changes,
    }


async def parse_transaction(args: ParseTransactionArgs) -> Dict[str, Any]:
    """Fetches a transaction and summarizes instructions, logs and balance deltas."""
    try:
        signature = Signature.from_string(args.signature)
    except ValueError as e:
        raise ValidationFailure("Invalid transaction signature format", details=str(e), signature=args.signature)

    endpoint = config.resolve_endpoint(args.cluster, args.rpc_url)
    try:
        async with _client(endpoint) as client:
            resp = await _bounded(
                client.get_transaction(
                    signature,
                    encoding="jsonParsed",
                    max_supported_transaction_version=0,
                )
            )
        if resp.value is None:
            tx = None
        else:
            tx = json.loads(resp.value.to_json())
    except Exception as e:
        raise _upstream_failure("parse transaction", e, signature=args.signature, cluster=args.cluster)

    if tx is None:
        return ok(exists=False, signature=args.signature, cluster=args.cluster, message="Transaction not found")
    return ok(exists=True, signature=args.signature, cluster=args.cluster, transaction=summarize_transaction(tx))


async def fund_keypair(args: FundKeypairArgs) -> Dict[str, Any]:
    """Requests a faucet airdrop on devnet or testnet."""
    if args.cluster not in config.AIRDROP_CLUSTERS:
        raise ValidationFailure(
            "Airdrop only available on devnet and testnet",
            publicKey=args.public_key,
            cluster=args.cluster,
        )
    if args.rpc_url:
        if "mainnet" in args.rpc_url.lower():
            raise ValidationFailure(
                "Airdrop only available on devnet and testnet",
                details="rpcUrl points at mainnet",
                publicKey=args.public_key,
                cluster=args.cluster,
            )
        logger.warning(f"Airdrop on {args.cluster} routed to custom rpcUrl {args.rpc_url}; the cluster is not verified")
    pubkey = _parse_pubkey(args.public_key)
    if args.amount <= 0:
        raise ValidationFailure(
            f"Amount must be greater than 0 and at most {config.MAX_AIRDROP_SOL:g} SOL",
            publicKey=args.public_key,
            requestedAmount=args.amount,
        )
    amount = min(args.amount, config.MAX_AIRDROP_SOL)
    clamped = amount != args.amount
    if clamped:
        logger.info(f"Clamping airdrop of {args.amount} SOL to {amount} SOL")

    endpoint = config.resolve_endpoint(args.cluster, args.rpc_url)
    try:
        async with _client(endpoint) as client:
            resp = await _bounded(client.request_airdrop(pubkey, int(amount * config.LAMPORTS_PER_SOL)))
            signature = resp.value
            await _bounded(client.confirm_transaction(signature, commitment=Confirmed))
            balance_resp = await _bounded(client.get_balance(pubkey))
    except Exception as e:
        failure = _upstream_failure("airdrop SOL", e, publicKey=args.public_key, cluster=args.cluster, amount=amount)
        failure.details = "Airdrop failed. The faucet may be rate-limited or unavailable."
        raise failure

    logger.info(f"Airdropped {amount} SOL to {pubkey} on {args.cluster}")
    return ok(
        publicKey=str(pubkey),
        cluster=args.cluster,
        amount=amount,
        requestedAmount=args.amount,
        clamped=clamped,
        signature=str(signature),
        balanceAfter=balance_resp.value / config.LAMPORTS_PER_SOL,
        message=f"Successfully airdropped {amount:g} SOL",
    )


def _json_list(idl: Dict[str, Any], key: str) -> List[Any]:
    value = idl.get(key) or []
    if not isinstance(value, list):
        raise ValueError(f"IDL field '{key}' must be an array")
    return value


def _declared_discriminator(name: str, value: Any) -> bytes:
    if not isinstance(value, list) or not all(isinstance(b, int) and 0 <= b <= 255 for b in value):
        raise ValueError(f"discriminator of instruction '{name}' must be an array of bytes")
    return bytes(value)


def verify_idl_discriminators(idl: Dict[str, Any]) -> Dict[str, Any]:
    """Recomputes every instruction discriminator of an Anchor IDL.

    Newer IDLs carry a ``discriminator`` array per instruction, which is
    compared against the recomputed value; older ones only get the
    computed value reported. A malformed IDL raises ``ValueError``.
    """
    verified, mismatched = [], []
    for instruction in _json_list(idl, "instructions"):
        if not isinstance(instruction, dict):
            raise ValueError("IDL instructions must be objects")
        name = instruction.get("name", "")
        if not name:
            continue
        if not isinstance(name, str):
            raise ValueError("IDL instruction names must be strings")
        expected = compute_discriminator(to_snake_case(name))
        entry = {"name": name, "discriminator": expected.hex()}
        declared = instruction.get("discriminator")
        if declared is None:
            entry["status"] = "GENERATED"
            verified.append(entry)
            continue
        declared = _declared_discriminator(name, declared)
        if declared == expected:
            entry["status"] = "MATCH"
            verified.append(entry)
        else:
            entry["status"] = "MISMATCH"
            entry["declared"] = declared.hex()
            mismatched.append(entry)
    return {"verified": verified, "mismatched": mismatched}


def _idl_summary(idl: Dict[str, Any]) -> Dict[str, Any]:
    metadata = idl.get("metadata") or {}
    if not isinstance(metadata, dict):
        metadata = {}
    return {
        "version": idl.get("version") or metadata.get("version") or "unknown",
        "name": idl.get("name") or metadata.get("name") or "unknown",
        "instructions": len(_json_list(idl, "instructions")),
        "accounts": len(_json_list(idl, "accounts")),
        "events": len(_json_list(idl, "events")),
    }


def inspect_idl(data: bytes) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Decodes IDL account data into its summary and discriminator report.

    Any undecodable or malformed content raises ``ValueError``.
    """
    try:
        idl = decode_idl_account(data)
    except (zlib.error, UnicodeDecodeError) as e:
        raise ValueError(str(e)) from e
    if not isinstance(idl, dict):
        raise ValueError("IDL is not a JSON object")
    return _idl_summary(idl), verify_idl_discriminators(idl)


async def verify_onchain_discriminators(args: VerifyOnchainDiscriminatorsArgs) -> Dict[str, Any]:
    """Verifies a program on-chain and checks its Anchor IDL discriminators."""
    program_key = _parse_pubkey(args.program_id, "programId")
    endpoint = config.resolve_endpoint(args.cluster, args.rpc_url)
    idl_key = idl_address(program_key)

    try:
        async with _client(endpoint) as client:
            program_resp = await _bounded(client.get_account_info(program_key))
            program_account = program_resp.value
            idl_account = None
            if program_account is not None and program_account.executable:
                idl_resp = await _bounded(client.get_account_info(idl_key))
                idl_account = idl_resp.value
    except Exception as e:
        raise _upstream_failure("fetch program data", e, programId=args.program_id, cluster=args.cluster)

    if program_account is None:
        raise ValidationFailure(
            "Program account not found",
            details=f"No account found at {args.program_id}",
            programId=str(program_key),
            cluster=args.cluster,
        )
    if not program_account.executable:
        raise ValidationFailure(
            "Account is not executable",
            details="This is not a valid Solana program account",
            programId=str(program_key),
            cluster=args.cluster,
        )

    summary = discriminators = idl_error = None
    if idl_account is not None and len(idl_account.data) > 0:
        try:
            summary, discriminators = inspect_idl(bytes(idl_account.data))
        except ValueError as e:
            idl_error = f"Could not decode IDL: {e}"
            logger.warning(idl_error)

    if summary is None:
        message = "Program executable but IDL not found. IDL may not be deployed with this program."
    elif discriminators["mismatched"]:
        message = f"{len(discriminators['mismatched'])} instruction discriminator(s) do not match the IDL."
    else:
        message = "Program IDL found on-chain and all instruction discriminators match."

    result = ok(
        programId=str(program_key),
        cluster=args.cluster,
        programAccount=_account_summary(program_account),
        idlAddress=str(idl_key),
        idlFound=summary is not None,
        idl=summary,
        discriminators=discriminators,
        verification={
            "executable": True,
            "idlAvailable": summary is not None,
            "message": message,
        },
    )
    if idl_error:
        result["idlError"] = idl_error
    return result
