"""Argument models for every tool.

Each model doubles as the ``inputSchema`` advertised in ``tools/list``,
so the schema a client sees is the schema the dispatcher validates.
"""

from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from .config import CLUSTER_URLS, DEFAULT_CLUSTER

Byte = Annotated[int, Field(ge=0, le=255)]

CLUSTERS = list(CLUSTER_URLS)


def _cluster_field(choices: List[str] = CLUSTERS, default: str = DEFAULT_CLUSTER) -> Any:
    return Field(
        default,
        description=f"Solana cluster (default: {default})",
        json_schema_extra={"enum": list(choices)},
    )


def _rpc_url_field() -> Any:
    return Field(None, description="Custom RPC URL (optional, overrides cluster)")


class ToolArguments(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    @classmethod
    def input_schema(cls) -> Dict[str, Any]:
        return cls.model_json_schema(by_alias=True)


# --- Derivation ---

class DerivePdaArgs(ToolArguments):
    program_id: str = Field(..., description="Program ID (base58 public key)")
    seeds: List[str] = Field(
        default_factory=list,
        description="Array of seed strings (will be UTF-8 encoded)",
    )
    seed_bytes: List[List[Byte]] = Field(
        default_factory=list,
        description="Array of raw byte arrays (for non-UTF8 seeds)",
    )


class ComputeDiscriminatorArgs(ToolArguments):
    instruction_name: str = Field(..., description='Name of the instruction (e.g. "initialize")')
    namespace: str = Field("global", description="Discriminator namespace (default: global)")


# --- RPC queries ---

class GetBalanceArgs(ToolArguments):
    public_key: str = Field(..., description="Public key (base58)")
    cluster: str = _cluster_field()
    rpc_url: Optional[str] = _rpc_url_field()


class GetAccountInfoArgs(ToolArguments):
    public_key: str = Field(..., description="Account public key (base58)")
    cluster: str = _cluster_field()
    rpc_url: Optional[str] = _rpc_url_field()
    encoding: str = Field(
        "base64",
        description="Data encoding (default: base64)",
        json_schema_extra={"enum": ["base64", "jsonParsed"]},
    )


class MemcmpFilter(BaseModel):
    offset: int = Field(..., ge=0)
    bytes: str = Field(..., description="Base58 encoded bytes to compare")


class AccountFilter(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    data_size: Optional[int] = Field(None, ge=0)
    memcmp: Optional[MemcmpFilter] = None

    @model_validator(mode="after")
    def exactly_one_kind(self) -> "AccountFilter":
        if (self.data_size is None) == (self.memcmp is None):
            raise ValueError("each filter needs exactly one of dataSize or memcmp")
        return self


class GetProgramAccountsArgs(ToolArguments):
    program_id: str = Field(..., description="Program ID (base58)")
    cluster: str = _cluster_field()
    rpc_url: Optional[str] = _rpc_url_field()
    limit: int = Field(10, ge=1, le=1000, description="Maximum number of accounts to return (default: 10)")
    filters: List[AccountFilter] = Field(
        default_factory=list,
        description="Account data filters (dataSize or memcmp)",
    )


class GetDeploymentStatusArgs(ToolArguments):
    program_id: str = Field(..., description="Program ID (public key)")
    cluster: str = _cluster_field()
    rpc_url: Optional[str] = _rpc_url_field()


class ParseTransactionArgs(ToolArguments):
    signature: str = Field(..., description="Transaction signature (base58)")
    cluster: str = _cluster_field()
    rpc_url: Optional[str] = _rpc_url_field()


class FundKeypairArgs(ToolArguments):
    public_key: str = Field(..., description="Public key to receive SOL")
    cluster: str = _cluster_field(["devnet", "testnet"], "devnet")
    amount: float = Field(2, description="Amount of SOL to airdrop (default: 2, max: 5)")
    rpc_url: Optional[str] = _rpc_url_field()


class VerifyOnchainDiscriminatorsArgs(ToolArguments):
    program_id: str = Field(..., description="Program ID (public key)")
    cluster: str = _cluster_field()
    rpc_url: Optional[str] = _rpc_url_field()


# --- Static analysis ---

class ScanSecurityArgs(ToolArguments):
    code: str = Field(..., description="Program source code to scan")
    code_type: str = Field(
        "rust",
        description="Programming language (default: rust)",
        json_schema_extra={"enum": ["rust", "typescript"]},
    )
    severity: str = Field(
        "medium",
        description="Minimum severity to report (default: medium)",
        json_schema_extra={"enum": ["low", "medium", "high", "critical"]},
    )


class AnalyzeErrorsArgs(ToolArguments):
    error_output: str = Field(..., description="Compiler output or error message")
    error_type: str = Field(
        "compilation",
        description="Kind of output (default: compilation)",
        json_schema_extra={"enum": ["compilation", "runtime", "test"]},
    )


# --- Scaffolding ---

class ScaffoldProgramArgs(ToolArguments):
    program_name: str = Field(..., description='Name of the program (e.g. "token-vault")')
    features: List[str] = Field(
        default_factory=list,
        description='Features to include: ["pda", "cpi", "token"]',
    )
    output_dir: Optional[str] = Field(
        None,
        description="Directory the project is created in, relative to the server scaffold root (default: the root)",
    )
