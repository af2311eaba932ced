"""
Static analysis tools: a regex based security scanner for Anchor programs
and a compiler-error analyzer mapping rustc/Anchor errors to known fixes.

Neither tool does semantic analysis; findings are heuristics.
"""

import re
from collections import Counter
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Pattern

from mcp.server.fastmcp.utilities.logging import get_logger

from .errors import ValidationFailure
from .models import AnalyzeErrorsArgs, ScanSecurityArgs
from .results import ok

logger = get_logger(__name__)

SEVERITY_ORDER = {"low": 0, "medium": 1, "high": 2, "critical": 3}
SEVERITY_WEIGHTS = {"low": 1, "medium": 5, "high": 15, "critical": 25}


# --- Security scanner ---

def _strip_line_comments(code: str) -> str:
    return "\n".join(line.split("//")[0] for line in code.split("\n"))


def has_reentrancy_risk(code: str) -> bool:
    # External call followed by a balance write
    return bool(re.search(r"(?:invoke|cpi|call)[\s\S]*?account.*?amount\s*=", code))


def has_arithmetic_risk(code: str) -> bool:
    arithmetic = re.compile(
        r"[a-zA-Z_]\w*\s*[+\-*/]=|=\s*[a-zA-Z_]\w*\s*[+\-*/]|let\s+\w+\s*=\s*\w+\s*[+\-*/]"
    )
    return bool(arithmetic.search(_strip_line_comments(code))) and bool(re.search(r"u64|u128|i64|i128", code))


def has_authority_risk(code: str) -> bool:
    return bool(re.search(r"#\[account\(\s*mut\s*\)\]", code)) and not re.search(
        r"constraint.*authority|owner|signer", code
    )


def has_oracle_risk(code: str) -> bool:
    uses_price = re.search(r"(pyth|oracle|price)[\s\S]*?\.price\(\)|\.get_price\(\)", code)
    return bool(uses_price) and not re.search(r"timestamp|staleness|freshness|max_age", code)


def has_unstored_bump(code: str) -> bool:
    derives = re.search(r"find_program_address|findProgramAddressSync", code)
    return bool(derives) and not re.search(r"pub.*bump|self\.bump|bump_seed", code)


def has_serialization_risk(code: str) -> bool:
    deserializes = re.search(r"try_from_slice|deserialize|from_slice", code)
    return bool(deserializes) and not re.search(r"data_len|len.*==|size_of", code)


def has_missing_checks(code: str) -> bool:
    mutates = re.search(r"account\.\w+\s*[+\-]=|balance\s*[+\-]=|\.amount\s*=|\.data\[", code, re.I)
    validates = re.search(r"require!|assert!|assert_eq!|if\s+[a-zA-Z_]", code, re.I)
    # Commented code is assumed to document its checks elsewhere
    commented = "//" in code
    return bool(mutates) and not validates and not commented


class SecurityCheck(NamedTuple):
    id: str
    severity: str
    title: str
    description: str
    detector: Callable[[str], bool]
    locator: Pattern
    fix: str
    cwe: str


SECURITY_CHECKS: List[SecurityCheck] = [
    SecurityCheck(
        "REENTRANCY", "critical",
        "Potential Reentrancy Vulnerability",
        "Code makes external calls before state updates. Attacker could call back into the program.",
        has_reentrancy_risk, re.compile(r"cpi|invoke|call", re.I),
        "Use checks-effects-interactions: validate inputs, update state, then call external programs",
        "CWE-407",
    ),
    SecurityCheck(
        "ARITHMETIC_OVERFLOW", "critical",
        "Unchecked Arithmetic Operation",
        "Code performs math on integer types without checking for overflow/underflow",
        has_arithmetic_risk, re.compile(r"[+\-*/]"),
        "Use checked_add/checked_sub/checked_mul and map None to an error",
        "CWE-190",
    ),
    SecurityCheck(
        "MISSING_AUTHORITY_CHECK", "critical",
        "Missing Authority Validation",
        "Instruction modifies state without validating signer or authority",
        has_authority_risk, re.compile(r"mut|account", re.I),
        "Add constraint checks for signers and account ownership",
        "CWE-306",
    ),
    SecurityCheck(
        "ORACLE_MANIPULATION", "high",
        "Unvalidated Oracle Price",
        "Code uses a price feed without freshness/staleness checks",
        has_oracle_risk, re.compile(r"pyth|oracle|price", re.I),
        "Validate oracle timestamp and confidence interval before using the price",
        "CWE-345",
    ),
    SecurityCheck(
        "PDA_BUMP_NOT_STORED", "high",
        "PDA Bump Not Stored",
        "Code derives a PDA but does not store the bump seed",
        has_unstored_bump, re.compile(r"find_program_address|findProgramAddressSync", re.I),
        "Store the canonical bump in account data and reuse it",
        "CWE-340",
    ),
    SecurityCheck(
        "UNSAFE_SERIALIZATION", "high",
        "Unsafe Serialization Pattern",
        "Code deserializes account data without validating its length",
        has_serialization_risk, re.compile(r"deserialize|from_slice|unsafe", re.I),
        "Use Anchor account types or validate all input sizes",
        "CWE-20",
    ),
    SecurityCheck(
        "MISSING_INPUT_VALIDATION", "high",
        "Missing Input Validation",
        "Instruction accepts parameters without validating ranges/constraints",
        has_missing_checks, re.compile(r"pub fn|pub async fn"),
        "Add require! checks for all instruction parameters",
        "CWE-20",
    ),
]


def find_pattern_location(code: str, pattern: Pattern) -> Dict[str, int]:
    """Returns the 1-based line and 0-based column of the first match."""
    for number, line in enumerate(code.split("\n"), start=1):
        match = pattern.search(line)
        if match:
            return {"line": number, "column": match.start()}
    return {"line": 1, "column": 0}


def scan_for_vulnerabilities(code: str) -> List[Dict[str, Any]]:
    findings = []
    for check in SECURITY_CHECKS:
        if check.detector(code):
            findings.append({
                "id": check.id,
                "severity": check.severity,
                "title": check.title,
                "description": check.description,
                "location": find_pattern_location(code, check.locator),
                "fix": check.fix,
                "cwe": check.cwe,
            })
    return findings


def filter_by_severity(findings: List[Dict[str, Any]], minimum: str) -> List[Dict[str, Any]]:
    level = SEVERITY_ORDER.get(minimum, SEVERITY_ORDER["medium"])
    return [f for f in findings if SEVERITY_ORDER[f["severity"]] >= level]


def security_score(findings: List[Dict[str, Any]], total: int) -> int:
    if total == 0:
        return 100
    risk = sum(SEVERITY_WEIGHTS.get(f["severity"], 0) for f in findings)
    return max(0, 100 - risk)


def _severity_counts(items: List[Dict[str, Any]]) -> Dict[str, int]:
    counts = {severity: 0 for severity in ("critical", "high", "medium", "low")}
    for item in items:
        counts[item["severity"]] += 1
    return counts


def security_recommendations(findings: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    seen = set()
    recommendations = []
    for finding in findings:
        if finding["id"] in seen:
            continue
        seen.add(finding["id"])
        recommendations.append({
            "priority": finding["severity"],
            "action": finding["title"],
            "details": finding["description"],
            "fix": finding["fix"],
            "cwe": finding["cwe"],
        })
    recommendations.sort(key=lambda r: -SEVERITY_ORDER[r["priority"]])
    return recommendations


async def scan_security(args: ScanSecurityArgs) -> Dict[str, Any]:
    """Scans Anchor/Rust program code for common vulnerabilities."""
    if not args.code.strip():
        raise ValidationFailure(
            "code is required and must be a non-empty string",
            details="Provide program source code for analysis",
        )
    findings = scan_for_vulnerabilities(args.code)
    filtered = filter_by_severity(findings, args.severity)
    logger.debug(f"scan_security found {len(findings)} issue(s), {len(filtered)} at or above {args.severity}")
    return ok(
        codeType=args.code_type,
        vulnerabilityCount=len(filtered),
        totalFound=len(findings),
        securityScore=security_score(filtered, len(findings)),
        vulnerabilities=filtered,
        summary={
            "byType": dict(Counter(f["id"] for f in filtered)),
            "bySeverity": _severity_counts(filtered),
        },
        recommendations=security_recommendations(filtered),
    )


# --- Compiler error analyzer ---

ERROR_LINE = re.compile(r"^error(?:\[([A-Z0-9]*)\])?:\s*(.+?)(?:\s+at |$)")
LOCATION_LINE = re.compile(r"-->\s*([^:]+):(\d+):(\d+)")


class ErrorCategory(NamedTuple):
    name: str
    keywords: tuple
    severity: str
    fix: str
    more_info: str


# Checked in order; the first category with a matching keyword wins
ERROR_CATEGORIES: List[ErrorCategory] = [
    ErrorCategory(
        "PDA_SEED", ("pda", "seed"), "high",
        "Ensure PDA seeds match between client and program (PublicKey.findProgramAddressSync)",
        "https://solana.com/docs/core/pda",
    ),
    ErrorCategory(
        "ACCOUNT_OWNERSHIP", ("owner", "account", "signer"), "critical",
        "Add proper account constraints and signer checks",
        "https://www.anchor-lang.com/docs/references/account-constraints",
    ),
    ErrorCategory(
        "CPI_ISSUE", ("cpi", "invoke"), "high",
        "Ensure CPI accounts are constructed correctly and signer seeds are passed",
        "https://solana.com/docs/core/cpi",
    ),
    ErrorCategory(
        "CONSTRAINT_VIOLATION", ("constraint", "invariant"), "medium",
        "Review account constraints and ensure data satisfies all conditions",
        "https://www.anchor-lang.com/docs/references/account-constraints",
    ),
    ErrorCategory(
        "COMPUTE_LIMIT", ("compute", "instruction"), "high",
        "Optimize computation or request additional compute units",
        "https://solana.com/docs/core/fees#compute-budget",
    ),
    ErrorCategory(
        "TYPE_MISMATCH", ("type", "expected"), "medium",
        "Ensure types match expected values. Check account types and instruction arguments.",
        "https://www.anchor-lang.com/docs/basics/idl",
    ),
    ErrorCategory(
        "LIFETIME_ISSUE", ("lifetime", "'info"), "medium",
        "Ensure account references use the 'info lifetime",
        "https://www.anchor-lang.com/docs/basics/program-structure",
    ),
]

UNKNOWN_CATEGORY = ErrorCategory(
    "UNKNOWN", (), "low",
    "Review the error message and check the Solana documentation",
    "https://solana.com/docs",
)

CATEGORY_RECOMMENDATIONS = {
    "PDA_SEED": ("high", "Verify PDA derivation seeds match between IDL and program code"),
    "ACCOUNT_OWNERSHIP": ("critical", "Add owner and signer constraints to all account fields"),
    "CPI_ISSUE": ("high", "Validate CPI account ordering and signer seeds"),
    "COMPUTE_LIMIT": ("high", "Optimize the algorithm or request a compute budget increase"),
    "CONSTRAINT_VIOLATION": ("medium", "Review all constraint conditions and ensure data satisfies them"),
}


def parse_errors(output: str) -> List[Dict[str, Any]]:
    """Splits compiler output into error blocks with optional locations."""
    errors: List[Dict[str, Any]] = []
    current: Optional[Dict[str, Any]] = None
    for line in output.split("\n"):
        match = ERROR_LINE.match(line)
        if match:
            current = {
                "type": match.group(1) or "unknown",
                "message": match.group(2),
                "details": [],
                "location": None,
            }
            errors.append(current)
            continue
        if current is None:
            continue
        location = LOCATION_LINE.search(line)
        if location:
            current["location"] = {
                "file": location.group(1).strip(),
                "line": int(location.group(2)),
                "column": int(location.group(3)),
            }
        elif line.strip():
            current["details"].append(line.strip())
    return errors


def categorize(message: str) -> ErrorCategory:
    lowered = message.lower()
    for category in ERROR_CATEGORIES:
        if any(keyword in lowered for keyword in category.keywords):
            return category
    return UNKNOWN_CATEGORY


def analyze_error(error: Dict[str, Any]) -> Dict[str, Any]:
    category = categorize(error["message"])
    return {
        **error,
        "category": category.name,
        "severity": category.severity,
        "fix": category.fix,
        "moreInfo": category.more_info,
    }


def error_summary(analyzed: List[Dict[str, Any]]) -> Dict[str, Any]:
    categories = Counter(e["category"] for e in analyzed)
    severities = _severity_counts(analyzed)
    return {
        "totalErrors": len(analyzed),
        "byCategory": dict(categories),
        "bySeverity": severities,
        "criticalIssues": severities["critical"] > 0,
        "focus": [f"Focus on {name} issues" for name, _ in categories.most_common(3)],
    }


def error_recommendations(analyzed: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    present = {e["category"] for e in analyzed}
    return [
        {"priority": priority, "action": action}
        for name, (priority, action) in CATEGORY_RECOMMENDATIONS.items()
        if name in present
    ]


async def analyze_errors(args: AnalyzeErrorsArgs) -> Dict[str, Any]:
    """Parses Anchor/Rust build output and maps each error to a known fix."""
    if not args.error_output.strip():
        raise ValidationFailure(
            "errorOutput is required and must be a non-empty string",
            details="Provide compiler output or error message",
        )
    analyzed = [analyze_error(error) for error in parse_errors(args.error_output)]
    return ok(
        errorType=args.error_type,
        errorCount=len(analyzed),
        errors=analyzed,
        summary=error_summary(analyzed),
        recommendations=error_recommendations(analyzed),
    )
