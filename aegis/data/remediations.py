import json
from pathlib import Path


_REMEDIATION_PATH = Path(__file__).with_name("remediations.json")

with open(_REMEDIATION_PATH, "r", encoding="utf-8") as f:
    _RAW = json.load(f)

GENERIC_REMEDIATION = _RAW.get("generic", "Review and remediate this security issue")

remediations = dict(_RAW.get("remediations", {}))


def remediation_for(finding_type: str) -> str:
    """Static remediation text for a finding type, or the generic fallback."""
    return remediations.get(finding_type, GENERIC_REMEDIATION)
