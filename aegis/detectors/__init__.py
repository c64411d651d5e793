"""
Aegis Detectors
Pattern-based detectors discovered by the DetectorLoader
"""
