"""
Tool registry.

A :class:`Tool` pairs a name, a description and an argument model with an
async handler. The :class:`ToolRegistry` is built once at start-up and is
read-only afterwards; the same table drives ``tools/list`` and
``tools/call``.
"""

import base64
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Type

import mcp.types as types
from mcp.server.fastmcp.utilities.logging import get_logger
from pydantic import ValidationError

from . import analysis, rpc, scaffold
from .derivation import DEFAULT_NAMESPACE, compute_discriminator, derive_pda
from .errors import ToolFailure, ValidationFailure
from .models import (
    AnalyzeErrorsArgs,
    ComputeDiscriminatorArgs,
    DerivePdaArgs,
    FundKeypairArgs,
    GetAccountInfoArgs,
    GetBalanceArgs,
    GetDeploymentStatusArgs,
    GetProgramAccountsArgs,
    ParseTransactionArgs,
    ScaffoldProgramArgs,
    ScanSecurityArgs,
    ToolArguments,
    VerifyOnchainDiscriminatorsArgs,
)
from .results import failure, ok

logger = get_logger(__name__)

Handler = Callable[[Any], Awaitable[Dict[str, Any]]]


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "arguments"
        parts.append(f"{location}: {item['msg']}")
    return "Invalid arguments: " + "; ".join(parts)


@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    arguments: Type[ToolArguments]
    handler: Handler

    def descriptor(self) -> Dict[str, Any]:
        tool = types.Tool(
            name=self.name,
            description=self.description,
            inputSchema=self.arguments.input_schema(),
        )
        return tool.model_dump(by_alias=True, exclude_none=True)

    async def invoke(self, arguments: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        """Validates ``arguments`` and runs the handler.

        Expected failures (bad input, upstream errors) come back as a
        failed result. Anything else propagates to the caller.
        """
        try:
            parsed = self.arguments.model_validate(dict(arguments or {}))
        except ValidationError as e:
            return failure(ValidationFailure(_format_validation_error(e)))
        try:
            return await self.handler(parsed)
        except ToolFailure as e:
            logger.info(f"Tool {self.name} failed: {e.message}")
            return failure(e)


class ToolRegistry(Mapping[str, Tool]):
    """Immutable, ordered name -> tool mapping."""

    def __init__(self, tools: Iterable[Tool]):
        table: Dict[str, Tool] = {}
        for tool in tools:
            if tool.name in table:
                raise ValueError(f"Duplicate tool name: {tool.name}")
            table[tool.name] = tool
        self._tools = MappingProxyType(table)

    def __getitem__(self, name: str) -> Tool:
        return self._tools[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def descriptors(self) -> List[Dict[str, Any]]:
        return [tool.descriptor() for tool in self._tools.values()]


# --- Local handlers ---

async def derive_pda_tool(args: DerivePdaArgs) -> Dict[str, Any]:
    """Derives a Program Derived Address from seeds and a program id."""
    seeds = [seed.encode("utf-8") for seed in args.seeds]
    seeds.extend(bytes(raw) for raw in args.seed_bytes)
    pda, bump = derive_pda(args.program_id, seeds)
    address = str(pda)
    result = ok(pda=address, bump=bump, programId=args.program_id)
    if args.seeds:
        result["seeds"] = list(args.seeds)
    if args.seed_bytes:
        result["seedBytes"] = [list(raw) for raw in args.seed_bytes]
    result["derivation"] = {"address": address, "bump": bump, "isOnCurve": pda.is_on_curve()}
    return result


async def compute_discriminator_tool(args: ComputeDiscriminatorArgs) -> Dict[str, Any]:
    """Computes an Anchor instruction discriminator."""
    namespace = args.namespace or DEFAULT_NAMESPACE
    discriminator = compute_discriminator(args.instruction_name, namespace)
    return ok(
        instructionName=args.instruction_name,
        namespace=namespace,
        preimage=f"{namespace}:{args.instruction_name}",
        discriminator={
            "hex": discriminator.hex(),
            "bytes": list(discriminator),
            "base64": base64.b64encode(discriminator).decode("ascii"),
        },
    )


def default_tools() -> List[Tool]:
    return [
        Tool(
            "derive_pda",
            "Derive a Program Derived Address (PDA) from seeds and program ID",
            DerivePdaArgs,
            derive_pda_tool,
        ),
        Tool(
            "compute_discriminator",
            "Compute the 8-byte Anchor discriminator for an instruction name",
            ComputeDiscriminatorArgs,
            compute_discriminator_tool,
        ),
        Tool("get_balance", "Get SOL balance for a public key", GetBalanceArgs, rpc.get_balance),
        Tool(
            "get_account_info",
            "Fetch account information from Solana blockchain",
            GetAccountInfoArgs,
            rpc.get_account_info,
        ),
        Tool(
            "get_program_accounts",
            "Get all accounts owned by a program",
            GetProgramAccountsArgs,
            rpc.get_program_accounts,
        ),
        Tool(
            "get_deployment_status",
            "Check deployment status of a program on-chain",
            GetDeploymentStatusArgs,
            rpc.get_deployment_status,
        ),
        Tool(
            "parse_transaction",
            "Fetch and parse a Solana transaction",
            ParseTransactionArgs,
            rpc.parse_transaction,
        ),
        Tool(
            "fund_keypair",
            "Airdrop SOL to a keypair on devnet or testnet",
            FundKeypairArgs,
            rpc.fund_keypair,
        ),
        Tool(
            "verify_onchain_discriminators",
            "Verify a program exists on-chain and check its Anchor IDL discriminators",
            VerifyOnchainDiscriminatorsArgs,
            rpc.verify_onchain_discriminators,
        ),
        Tool(
            "scan_security",
            "Scan Anchor/Rust program code for security vulnerabilities",
            ScanSecurityArgs,
            analysis.scan_security,
        ),
        Tool(
            "analyze_errors",
            "Parse Anchor/Rust compiler errors and suggest fixes",
            AnalyzeErrorsArgs,
            analysis.analyze_errors,
        ),
        Tool(
            "scaffold_program",
            "Generate Anchor program structure with best practices",
            ScaffoldProgramArgs,
            scaffold.scaffold_program,
        ),
    ]


def build_registry(tools: Optional[Iterable[Tool]] = None) -> ToolRegistry:
    return ToolRegistry(default_tools() if tools is None else tools)
