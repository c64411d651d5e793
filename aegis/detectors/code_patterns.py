"""
Code Pattern Detector for Aegis
Session, network, smart contract, infrastructure, API and authentication
pattern groups, each reported under its own category.
"""

import asyncio
from typing import Dict, List

from aegis.detectors.context import DetectorContext, PatternRule


METADATA = {
    "id": "code_patterns",
    "name": "Code Vulnerability Patterns",
    "category": "code_security",
    "severity_hint": "high",
    "implemented": True,
}

SESSION = "session_management_vulnerabilities"
NETWORK = "network_security_configuration_issues"
CONTRACT = "smart_contract_security_patterns"
INFRASTRUCTURE = "infrastructure_security_gaps"
API = "api_security_misconfigurations"
AUTH = "authentication_bypass_patterns"

PATTERN_GROUPS = {
    SESSION: [
        ("session_fixation", "high", "Session ID not regenerated after authentication",
         r"login.*session_start\(\)"),
        ("insecure_session_storage", "medium", "Session data stored in insecure location",
         r"localStorage\.setItem.*session"),
        ("missing_session_timeout", "medium", "No session timeout mechanism implemented",
         r"^(?!.*timeout).*\bsession_start\("),
    ],
    NETWORK: [
        ("http_without_https", "high", "HTTP used instead of HTTPS",
         r"http://(?!localhost|127\.0\.0\.1)"),
        ("cors_misconfiguration", "medium", "CORS configured to allow all origins",
         r"Access-Control-Allow-Origin.*\*"),
    ],
    CONTRACT: [
        ("reentrancy_vulnerability", "critical", "Potential reentrancy attack vulnerability",
         r"\.call\{value:.*\}\("),
        ("integer_overflow", "high", "Potential integer overflow/underflow",
         r"^(?!.*SafeMath).*(?:\+\+|--|[+\-*/]=)"),
        ("access_control_missing", "medium", "Missing access control modifiers",
         r"function\s+\w+\s*\([^)]*\)\s*(?:public|external)\b(?!.*\b(?:onlyOwner|view|pure)\b)"),
    ],
    INFRASTRUCTURE: [
        ("default_credentials", "critical", "Default or weak credentials detected",
         r"password\s*[:=]\s*['\"]?(?:admin|123456|password)\b"),
        ("exposed_debug_info", "medium", "Debug information exposed in production",
         r"console\.(?:log|debug|error)\(.*(?:password|token|secret|key)"),
        ("insecure_file_permissions", "medium", "Insecure file permissions",
         r"chmod\s+(?:-R\s+)?777"),
    ],
    API: [
        ("missing_rate_limiting", "medium", "API endpoints without rate limiting",
         r"^(?!.*rateLimit).*\bapp\.(?:get|post|put|delete)\s*\("),
        ("missing_input_validation", "high", "Missing input validation on API endpoints",
         r"^(?!.*validat).*\breq\.(?:body|params|query)\."),
        ("exposed_api_endpoints", "high", "API endpoints without authentication",
         r"^(?!.*auth).*\bapp\.(?:get|post|put|delete)\s*\("),
    ],
    AUTH: [
        ("jwt_none_algorithm", "critical", "JWT using none algorithm vulnerability",
         r"jwt\.sign.*algorithm.*['\"]none['\"]"),
        ("weak_password_policy", "medium", "Weak password policy implementation",
         r"password.*length\s*(?:>=?|<)\s*[1-5]\b"),
    ],
}

# Solidity-only rules; their patterns are too broad for general code
SOLIDITY_ONLY = {"integer_overflow", "access_control_missing"}

RULES = [
    PatternRule(
        type=finding_type,
        severity=severity,
        description=description,
        pattern=pattern,
        category=category,
        suffixes=(".sol",) if finding_type in SOLIDITY_ONLY else (),
    )
    for category, patterns in PATTERN_GROUPS.items()
    for finding_type, severity, description, pattern in patterns
]


async def run(target: str, context: DetectorContext) -> List[Dict]:
    """Run every pattern group over the target's sources."""
    return await asyncio.to_thread(context.match, target, RULES)
