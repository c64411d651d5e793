"""
Detector context for Aegis
Shared source walking and line-based pattern matching for detectors
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Sequence, Tuple

SKIPPED_DIRS = {".git", ".hg", ".svn", "node_modules", "__pycache__", ".venv", "venv", "dist", "build"}


@dataclass(frozen=True)
class PatternRule:
    """One line-level vulnerability pattern."""

    type: str
    severity: str
    description: str
    pattern: str
    category: str
    suffixes: Tuple[str, ...] = ()

    def compiled(self) -> "re.Pattern":
        return re.compile(self.pattern, re.IGNORECASE)

    def applies_to(self, path: str) -> bool:
        return not self.suffixes or Path(path).suffix.lower() in self.suffixes


@dataclass
class DetectorContext:
    """Per-run settings handed to every detector's run()."""

    max_file_bytes: int = 1024 * 1024
    source_suffixes: Sequence[str] = field(default_factory=lambda: [".py", ".js", ".ts", ".sol", ".php"])
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("aegis.detectors"))

    @classmethod
    def from_config(cls, config) -> "DetectorContext":
        return cls(max_file_bytes=config.max_file_bytes, source_suffixes=list(config.source_suffixes))

    def _scannable(self, path: Path) -> bool:
        suffixes = {s.lower() for s in self.source_suffixes}
        # dotfiles like .env have no suffix, only a name
        if path.suffix.lower() not in suffixes and path.name.lower() not in suffixes:
            return False
        try:
            return path.stat().st_size <= self.max_file_bytes
        except OSError:
            return False

    def iter_sources(self, target: str) -> Iterator[Tuple[str, str]]:
        """Yield (relative_path, text) for every scannable file under target.

        Raises FileNotFoundError when the target is not a local path.
        """
        root = Path(target).expanduser()
        if not root.exists():
            raise FileNotFoundError(f"Target path does not exist: {target}")

        if root.is_file():
            candidates = [root]
            base = root.parent
        else:
            candidates = sorted(
                p for p in root.rglob("*")
                if p.is_file() and not SKIPPED_DIRS.intersection(p.relative_to(root).parts[:-1])
            )
            base = root

        for path in candidates:
            if not self._scannable(path):
                continue
            try:
                text = path.read_text(encoding="utf-8", errors="ignore")
            except OSError as e:
                self.logger.warning(f"Could not read {path}: {e}")
                continue
            yield path.relative_to(base).as_posix(), text

    def match(self, target: str, rules: Sequence[PatternRule]) -> List[Dict]:
        """Run every rule over every line; one raw record per matching line."""
        compiled = [(rule, rule.compiled()) for rule in rules]
        records = []

        for rel_path, text in self.iter_sources(target):
            for lineno, line in enumerate(text.splitlines(), start=1):
                for rule, regex in compiled:
                    if rule.applies_to(rel_path) and regex.search(line):
                        records.append({
                            "type": rule.type,
                            "category": rule.category,
                            "severity": rule.severity,
                            "description": rule.description,
                            "file": rel_path,
                            "line": lineno,
                        })

        return records

