"""
Secret and Injection Pattern Detector for Aegis
Flags hardcoded secrets, injectable queries, unsafe DOM writes and weak hashes
"""

import asyncio
from typing import Dict, List

from aegis.detectors.context import DetectorContext, PatternRule


METADATA = {
    "id": "secret_patterns",
    "name": "Secret & Injection Patterns",
    "category": "code_security",
    "severity_hint": "critical",
    "implemented": True,
}


RULES = [
    PatternRule(
        type="exposed_secrets",
        severity="critical",
        description="API keys or secrets exposed in code",
        pattern=r"(?:api[_-]?key|secret|token|password)\s*[:=]\s*['\"]?[\w\-]{10,}['\"]?",
        category="secret_exposure",
    ),
    PatternRule(
        type="sql_injection",
        severity="high",
        description="Potential SQL injection vulnerability",
        pattern=r"SELECT\s+.+\s+FROM\s+.+WHERE.*(?:\$\{|['\"]\s*\+|%s|\.format\()",
        category="injection",
    ),
    PatternRule(
        type="xss_vulnerability",
        severity="medium",
        description="Cross-site scripting vulnerability",
        pattern=r"\.innerHTML\s*=\s*(?!['\"][^'\"]*['\"]\s*;?\s*$)\S",
        category="injection",
    ),
    PatternRule(
        type="weak_encryption",
        severity="medium",
        description="Weak encryption algorithm detected",
        pattern=r"\b(?:md5|sha1)\b",
        category="cryptography",
    ),
]


async def run(target: str, context: DetectorContext) -> List[Dict]:
    """Scan every source file under target for secret and injection patterns."""
    return await asyncio.to_thread(context.match, target, RULES)
