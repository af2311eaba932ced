import pytest

from solagent_forge.analysis import (
    analyze_errors,
    categorize,
    filter_by_severity,
    parse_errors,
    scan_for_vulnerabilities,
    scan_security,
    security_score,
)
from solagent_forge.models import AnalyzeErrorsArgs, ScanSecurityArgs

# Mark all tests in this module as asyncio
pytestmark = pytest.mark.asyncio

VULNERABLE_PROGRAM = """use anchor_lang::prelude::*;
pub fn deposit(ctx: Context<Deposit>, amount: u64) -> Result<()> {
    let vault = &mut ctx.accounts.vault;
    vault.total += amount;
    Ok(())
}

#[derive(Accounts)]
pub struct Deposit<'info> {
    #[account(mut)]
    pub vault: Account<'info, Vault>,
}
"""

UNSTORED_BUMP_PROGRAM = """pub fn locate(program_id: &Pubkey) -> Pubkey {
    let (pda, _) = Pubkey::find_program_address(&[b"vault"], program_id);
    pda
}
"""

BUILD_OUTPUT = """   Compiling vault v0.1.0 (/work/programs/vault)
error[E0308]: mismatched types
  --> programs/vault/src/lib.rs:12:5
   |
12 |     let x: u8 = amount;
   |                 ^^^^^^ expected `u8`, found `u64`

error: Error: seeds constraint was violated
"""


# --- scan_security ---

async def test_scan_security_reports_findings():
    result = await scan_security(ScanSecurityArgs(code=VULNERABLE_PROGRAM))

    assert result["success"] is True
    ids = {v["id"] for v in result["vulnerabilities"]}
    assert ids == {"ARITHMETIC_OVERFLOW", "MISSING_AUTHORITY_CHECK"}
    assert result["vulnerabilityCount"] == 2
    assert result["totalFound"] == 2
    assert result["securityScore"] == 50
    assert result["summary"]["bySeverity"]["critical"] == 2
    assert result["summary"]["byType"] == {"ARITHMETIC_OVERFLOW": 1, "MISSING_AUTHORITY_CHECK": 1}
    for vulnerability in result["vulnerabilities"]:
        assert vulnerability["fix"]
        assert vulnerability["cwe"].startswith("CWE-")


async def test_scan_security_locates_findings():
    findings = {f["id"]: f for f in scan_for_vulnerabilities(VULNERABLE_PROGRAM)}
    # First line mentioning `mut`
    assert findings["MISSING_AUTHORITY_CHECK"]["location"] == {"line": 3, "column": 17}


@pytest.mark.parametrize(
    "severity, count, score",
    [
        ("low", 1, 85),
        ("high", 1, 85),
        ("critical", 0, 100),
    ],
)
async def test_scan_security_severity_threshold(severity: str, count: int, score: int):
    result = await scan_security(ScanSecurityArgs(code=UNSTORED_BUMP_PROGRAM, severity=severity))

    assert result["totalFound"] == 1
    assert result["vulnerabilityCount"] == count
    assert result["securityScore"] == score


async def test_scan_security_clean_code():
    result = await scan_security(ScanSecurityArgs(code="pub fn noop() {}\n"))
    assert result["vulnerabilities"] == []
    assert result["securityScore"] == 100
    assert result["recommendations"] == []


async def test_scan_security_recommendations_are_deduplicated_and_ordered():
    code = VULNERABLE_PROGRAM + UNSTORED_BUMP_PROGRAM
    result = await scan_security(ScanSecurityArgs(code=code, severity="low"))
    priorities = [r["priority"] for r in result["recommendations"]]
    assert priorities == sorted(priorities, key=["critical", "high", "medium", "low"].index)
    assert len(result["recommendations"]) == len({v["id"] for v in result["vulnerabilities"]})


async def test_scan_security_empty_code(dispatcher):
    result = await dispatcher.call_tool("scan_security", {"code": "   "})
    assert result["success"] is False
    assert result["errorKind"] == "validation"
    assert "code is required" in result["error"]


async def test_security_score_floor():
    findings = [{"severity": "critical"}] * 10
    assert security_score(findings, 10) == 0
    assert filter_by_severity(findings, "unknown-level") == findings


# --- analyze_errors ---

async def test_parse_errors_blocks_and_locations():
    errors = parse_errors(BUILD_OUTPUT)

    assert len(errors) == 2
    first, second = errors
    assert first["type"] == "E0308"
    assert first["message"] == "mismatched types"
    assert first["location"] == {"file": "programs/vault/src/lib.rs", "line": 12, "column": 5}
    assert len(first["details"]) == 3
    assert second["type"] == "unknown"
    assert second["message"] == "Error: seeds constraint was violated"
    assert second["location"] is None


async def test_parse_errors_strips_trailing_location_phrase():
    errors = parse_errors("error: failed to resolve at programs/vault/src/lib.rs")
    assert errors[0]["message"] == "failed to resolve"


@pytest.mark.parametrize(
    "message, category",
    [
        ("Error: seeds constraint was violated", "PDA_SEED"),
        ("missing signer for account vault", "ACCOUNT_OWNERSHIP"),
        ("cross-program invoke failed", "CPI_ISSUE"),
        ("A has_one constraint was violated", "CONSTRAINT_VIOLATION"),
        ("exceeded maximum compute units", "COMPUTE_LIMIT"),
        ("mismatched types", "TYPE_MISMATCH"),
        ("borrowed value does not live long enough for lifetime", "LIFETIME_ISSUE"),
        ("something odd happened", "UNKNOWN"),
    ],
)
async def test_categorize(message: str, category: str):
    assert categorize(message).name == category


async def test_analyze_errors_summary():
    result = await analyze_errors(AnalyzeErrorsArgs(error_output=BUILD_OUTPUT))

    assert result["success"] is True
    assert result["errorType"] == "compilation"
    assert result["errorCount"] == 2
    assert [e["category"] for e in result["errors"]] == ["TYPE_MISMATCH", "PDA_SEED"]
    assert result["errors"][0]["moreInfo"].startswith("https://")
    summary = result["summary"]
    assert summary["totalErrors"] == 2
    assert summary["byCategory"] == {"TYPE_MISMATCH": 1, "PDA_SEED": 1}
    assert summary["bySeverity"]["high"] == 1
    assert summary["bySeverity"]["medium"] == 1
    assert summary["criticalIssues"] is False
    assert result["recommendations"] == [
        {"priority": "high", "action": "Verify PDA derivation seeds match between IDL and program code"}
    ]


async def test_analyze_errors_critical_issue():
    result = await analyze_errors(
        AnalyzeErrorsArgs(error_output="error: missing signer for account vault", error_type="runtime")
    )
    assert result["summary"]["criticalIssues"] is True
    assert result["errors"][0]["severity"] == "critical"


async def test_analyze_errors_without_error_lines():
    result = await analyze_errors(AnalyzeErrorsArgs(error_output="warning: unused variable `x`"))
    assert result["success"] is True
    assert result["errorCount"] == 0
    assert result["summary"]["focus"] == []


async def test_analyze_errors_empty_output(dispatcher):
    result = await dispatcher.call_tool("analyze_errors", {"errorOutput": ""})
    assert result["success"] is False
    assert "errorOutput is required" in result["error"]
