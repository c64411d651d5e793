"""
Detector Loader for Aegis
Handles dynamic detector discovery, validation and registration
"""

import importlib.util
import inspect
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

REQUIRED_METADATA = ("id", "name", "category", "severity_hint", "implemented")

DEFAULT_DETECTORS_DIR = Path(__file__).resolve().parent.parent / "detectors"

_SKIPPED_FILES = {"__init__.py", "context.py"}


class DetectorLoader:
    """Loads and manages detector modules."""

    def __init__(self, detectors_dir: Optional[str] = None):
        self.detectors_dir = Path(detectors_dir) if detectors_dir else DEFAULT_DETECTORS_DIR
        self.loaded_detectors: Dict[str, Any] = {}
        self.detector_metadata: Dict[str, Dict] = {}
        self.logger = logging.getLogger(__name__)

    def discover_detectors(self) -> List[str]:
        """Discover available detector files."""
        detector_files = []

        if not self.detectors_dir.exists():
            self.logger.warning(f"Detectors directory {self.detectors_dir} does not exist")
            return detector_files

        for detector_file in sorted(self.detectors_dir.glob("*.py")):
            if detector_file.name in _SKIPPED_FILES or detector_file.name.startswith("_"):
                continue
            detector_files.append(detector_file.stem)

        self.logger.info(f"Discovered {len(detector_files)} detectors: {detector_files}")
        return detector_files

    def validate_module(self, name: str, module: Any) -> bool:
        metadata = getattr(module, "METADATA", None)
        if not isinstance(metadata, dict):
            self.logger.error(f"Detector {name} missing METADATA")
            return False

        missing = [k for k in REQUIRED_METADATA if k not in metadata]
        if missing:
            self.logger.error(f"Detector {name} metadata missing required fields: {missing}")
            return False

        run_func = getattr(module, "run", None)
        if run_func is None:
            self.logger.error(f"Detector {name} missing run function")
            return False

        if not inspect.iscoroutinefunction(run_func):
            self.logger.error(f"Detector {name} run function must be async")
            return False

        return True

    def load_detector(self, detector_name: str) -> bool:
        """Load a single detector module by file name."""
        try:
            detector_path = self.detectors_dir / f"{detector_name}.py"
            if not detector_path.exists():
                self.logger.error(f"Detector file not found: {detector_path}")
                return False

            spec = importlib.util.spec_from_file_location(f"aegis_detector_{detector_name}", detector_path)
            if spec is None or spec.loader is None:
                self.logger.error(f"Could not load spec for detector: {detector_name}")
                return False

            module = importlib.util.module_from_spec(spec)
            spec.loader.exec_module(module)

            return self.register(detector_name, module)

        except Exception as e:
            self.logger.error(f"Error loading detector {detector_name}: {e}")
            return False

    def register(self, name: str, module: Any) -> bool:
        """Register a detector object exposing METADATA and an async run()."""
        if not self.validate_module(name, module):
            return False

        if not module.METADATA.get("implemented", True):
            self.logger.info(f"Skipping detector {name}: not implemented")
            return False

        self.loaded_detectors[name] = module
        self.detector_metadata[name] = module.METADATA
        self.logger.info(f"Successfully loaded detector: {name}")
        return True

    def load_all_detectors(self) -> int:
        detector_names = self.discover_detectors()
        loaded_count = 0

        for detector_name in detector_names:
            if self.load_detector(detector_name):
                loaded_count += 1

        self.logger.info(f"Loaded {loaded_count}/{len(detector_names)} detectors")
        return loaded_count

    def get_detector(self, name: str) -> Optional[Any]:
        return self.loaded_detectors.get(name)

    def get_detector_metadata(self, name: str) -> Optional[Dict]:
        return self.detector_metadata.get(name)

    def filter_detectors(self,
                         detector_list: Optional[List[str]] = None,
                         categories: Optional[List[str]] = None) -> Dict[str, Any]:
        """Filter loaded detectors by name and category."""
        filtered = dict(self.loaded_detectors)

        if detector_list:
            filtered = {
                name: detector for name, detector in filtered.items()
                if name in detector_list or self.detector_metadata[name].get("id") in detector_list
            }

        if categories:
            wanted = [c.lower() for c in categories]
            filtered = {
                name: detector for name, detector in filtered.items()
                if any(c in self.detector_metadata[name].get("category", "").lower() for c in wanted)
            }

        return filtered

    def get_detector_stats(self) -> Dict[str, Any]:
        stats = {
            "total_detectors": len(self.loaded_detectors),
            "by_category": {},
            "by_severity_hint": {},
        }

        for metadata in self.detector_metadata.values():
            category = metadata.get("category", "unknown")
            stats["by_category"][category] = stats["by_category"].get(category, 0) + 1

            severity = metadata.get("severity_hint", "unknown")
            stats["by_severity_hint"][severity] = stats["by_severity_hint"].get(severity, 0) + 1

        return stats
