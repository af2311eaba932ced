"""Anchor project scaffolding."""

import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import anyio

from mcp.server.fastmcp.utilities.logging import get_logger

from . import config
from .errors import ValidationFailure
from .models import ScaffoldProgramArgs
from .results import ok

logger = get_logger(__name__)

PROGRAM_NAME = re.compile(r"^[A-Za-z][A-Za-z0-9_-]{0,63}$")
PLACEHOLDER_PROGRAM_ID = "11111111111111111111111111111111"
KNOWN_FEATURES = ("pda", "cpi", "token")

PROGRAM_TEMPLATE = """use anchor_lang::prelude::*;

declare_id!("{program_id}");

#[program]
pub mod {snake} {{
    use super::*;

    pub fn initialize(ctx: Context<Initialize>) -> Result<()> {{
        msg!("Program initialized");
        Ok(())
    }}
}}

#[derive(Accounts)]
pub struct Initialize {{}}
"""

TEST_TEMPLATE = """import * as anchor from "@coral-xyz/anchor";
import {{ Program }} from "@coral-xyz/anchor";
import {{ {pascal} }} from "../target/types/{snake}";

describe("{snake}", () => {{
  const provider = anchor.AnchorProvider.env();
  anchor.setProvider(provider);

  const program = anchor.workspace.{pascal} as Program<{pascal}>;

  it("Initializes successfully", async () => {{
    const tx = await program.methods.initialize().rpc();
    console.log("Transaction signature:", tx);
  }});
}});
"""

CARGO_TEMPLATE = """[package]
name = "{snake}"
version = "0.1.0"
edition = "2021"

[lib]
crate-type = ["cdylib", "lib"]
name = "{snake}"

[features]
default = []
cpi = ["no-entrypoint"]
no-entrypoint = []
idl-build = ["anchor-lang/idl-build"]

[dependencies]
anchor-lang = "0.30.1"
{extra_dependencies}"""

ANCHOR_TOML_TEMPLATE = """[toolchain]

[features]
resolution = true
skip-lint = false

[programs.devnet]
{snake} = "{program_id}"

[registry]
url = "https://api.apr.dev"

[provider]
cluster = "devnet"
wallet = "~/.config/solana/id.json"

[scripts]
test = "yarn run ts-mocha -p ./tsconfig.json -t 1000000 tests/**/*.ts"
"""


def program_names(program_name: str) -> Dict[str, str]:
    """Returns the snake, camel and pascal case forms of a program name."""
    snake = program_name.lower().replace("-", "_")
    words = [w for w in snake.split("_") if w]
    camel = words[0] + "".join(w.capitalize() for w in words[1:])
    return {"snake": snake, "camel": camel, "pascal": camel[0].upper() + camel[1:]}


def resolve_output_dir(output_dir: Optional[str]) -> Path:
    """Resolves ``outputDir`` against the scaffold root, refusing anything outside it."""
    root = Path(config.SCAFFOLD_ROOT).resolve()
    if not output_dir:
        return root
    candidate = (root / output_dir).resolve()
    try:
        candidate.relative_to(root)
    except ValueError:
        raise ValidationFailure(
            f"Output directory must be inside the scaffold root: {output_dir}",
            outputDir=output_dir,
        )
    return candidate


def resolve_project_root(output_dir: Path, program_name: str) -> Path:
    """Resolves the project directory, refusing anything outside ``output_dir``."""
    base = output_dir.resolve()
    project_root = (base / program_name).resolve()
    try:
        project_root.relative_to(base)
    except ValueError:
        raise ValidationFailure(f"Invalid project path: {program_name}", programName=program_name)
    if project_root.exists():
        raise ValidationFailure(
            f"Project directory already exists: {project_root}",
            programName=program_name,
        )
    return project_root


def render_project(program_name: str, features: List[str]) -> Dict[str, str]:
    """Maps relative file paths to their generated contents."""
    names = program_names(program_name)
    snake = names["snake"]
    extra = 'anchor-spl = "0.30.1"\n' if "token" in features else ""
    package_json = {
        "name": program_name,
        "version": "0.1.0",
        "dependencies": {
            "@coral-xyz/anchor": "^0.30.1",
            "@solana/web3.js": "^1.95.0",
        },
        "devDependencies": {
            "ts-mocha": "^10.0.0",
            "typescript": "^5.0.0",
            "@types/mocha": "^10.0.0",
            "@types/node": "^20.0.0",
        },
    }
    return {
        f"programs/{snake}/src/lib.rs": PROGRAM_TEMPLATE.format(program_id=PLACEHOLDER_PROGRAM_ID, **names),
        f"programs/{snake}/Cargo.toml": CARGO_TEMPLATE.format(extra_dependencies=extra, **names),
        f"tests/{snake}.ts": TEST_TEMPLATE.format(**names),
        "Anchor.toml": ANCHOR_TOML_TEMPLATE.format(program_id=PLACEHOLDER_PROGRAM_ID, **names),
        "package.json": json.dumps(package_json, indent=2) + "\n",
    }


def write_project(project_root: Path, files: Dict[str, str]) -> None:
    (project_root / "app").mkdir(parents=True)
    for relative, content in files.items():
        path = project_root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")


async def scaffold_program(args: ScaffoldProgramArgs) -> Dict[str, Any]:
    """Generates an Anchor program skeleton."""
    if not PROGRAM_NAME.match(args.program_name):
        raise ValidationFailure(
            "Invalid program name: use letters, digits, '-' or '_', starting with a letter",
            programName=args.program_name,
        )
    output_dir = resolve_output_dir(args.output_dir)
    project_root = resolve_project_root(output_dir, args.program_name)
    files = render_project(args.program_name, args.features)

    try:
        await anyio.to_thread.run_sync(write_project, project_root, files)
    except OSError as e:
        logger.exception(f"Error writing project to {project_root}: {e}")
        raise ValidationFailure(f"Failed to write project: {e}", programName=args.program_name)
    logger.info(f"Scaffolded {args.program_name} at {project_root}")

    unknown = [f for f in args.features if f not in KNOWN_FEATURES]
    result = ok(
        projectPath=str(project_root),
        programName=program_names(args.program_name)["snake"],
        files=list(files),
        nextSteps=[
            f"cd {project_root}",
            "npm install",
            "anchor build",
            "anchor test",
        ],
        features=list(args.features),
    )
    if unknown:
        result["unsupportedFeatures"] = unknown
    return result
