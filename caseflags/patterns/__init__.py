"""
Patterns module: heuristic detection of actionable flag patterns.
"""

from .config import PatternConfig
from .detector import PatternDetector, detect_patterns
from .schema import DetectedPattern, PatternSeverity, PatternType

__all__ = [
	"PatternConfig",
	"PatternDetector",
	"detect_patterns",
	"DetectedPattern",
	"PatternSeverity",
	"PatternType",
]
