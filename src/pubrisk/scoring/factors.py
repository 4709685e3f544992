"""Risk levels, signal results and diagnosis data structures."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from pubrisk.collectors.github import RepoHealth
from pubrisk.collectors.pubdev import PackageVerification
from pubrisk.versions import Version


class RiskLevel(str, Enum):
    """Risk tier classification."""

    HEALTHY = "HEALTHY"
    LOW = "LOW"
    WARNING = "WARNING"
    RISKY = "RISKY"
    CRITICAL = "CRITICAL"

    @classmethod
    def from_score(cls, score: float) -> "RiskLevel":
        """Get risk level from numeric score."""
        if score <= 20:
            return cls.HEALTHY
        elif score <= 40:
            return cls.LOW
        elif score <= 60:
            return cls.WARNING
        elif score <= 80:
            return cls.RISKY
        else:
            return cls.CRITICAL

    @property
    def label(self) -> str:
        return {
            RiskLevel.HEALTHY: "Healthy",
            RiskLevel.LOW: "Low Risk",
            RiskLevel.WARNING: "Warning",
            RiskLevel.RISKY: "Risky",
            RiskLevel.CRITICAL: "Critical",
        }[self]

    @property
    def color(self) -> str:
        """Rich color used when rendering this level."""
        return {
            RiskLevel.HEALTHY: "green",
            RiskLevel.LOW: "green",
            RiskLevel.WARNING: "yellow",
            RiskLevel.RISKY: "orange1",
            RiskLevel.CRITICAL: "red",
        }[self]

    @property
    def description(self) -> str:
        """Human-readable description of the risk level."""
        return {
            RiskLevel.HEALTHY: "No actionable concerns",
            RiskLevel.LOW: "Minor issues worth monitoring",
            RiskLevel.WARNING: "Attention recommended before the next release",
            RiskLevel.RISKY: "Significant problems - plan remediation soon",
            RiskLevel.CRITICAL: "Blocking issues - act immediately",
        }[self]


@dataclass(frozen=True)
class SignalResult:
    """Outcome of evaluating one signal against one package."""

    signal_id: str
    risk: float
    reason: str
    detail: Optional[str] = None
    failed: bool = False

    def __post_init__(self):
        if not 0.0 <= self.risk <= 1.0:
            raise ValueError(f"Signal {self.signal_id} produced risk {self.risk!r} outside [0, 1]")

    def to_dict(self) -> dict:
        return {
            "id": self.signal_id,
            "risk": self.risk,
            "reason": self.reason,
            "detail": self.detail,
            "failed": self.failed,
        }


@dataclass(frozen=True)
class DiagnosisResult:
    """Complete risk assessment for one dependency."""

    package_name: str
    current_version: Version
    latest_version: Optional[Version]
    score: float
    risk_level: RiskLevel
    signals: tuple[SignalResult, ...]  # descending signal weight
    recommendations: tuple[str, ...]
    verification: PackageVerification = PackageVerification.NONE
    repo_health: Optional[RepoHealth] = None
    from_cache: bool = False

    @property
    def failed_signals(self) -> list[SignalResult]:
        return [s for s in self.signals if s.failed]

    def signal(self, signal_id: str) -> Optional[SignalResult]:
        return next((s for s in self.signals if s.signal_id == signal_id), None)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "package": self.package_name,
            "current_version": str(self.current_version),
            "latest_version": str(self.latest_version) if self.latest_version else None,
            "score": round(self.score, 1),
            "risk_level": self.risk_level.value,
            "signals": [s.to_dict() for s in self.signals],
            "recommendations": list(self.recommendations),
            "verification": self.verification.value,
            "repo_health": self.repo_health.to_dict() if self.repo_health else None,
            "from_cache": self.from_cache,
        }


@dataclass
class ProjectDiagnosis:
    """Diagnosis for every scored dependency of a project."""

    results: list[DiagnosisResult]  # descending score
    scanned_at: datetime
    sdk_version: Optional[Version] = None
    project_sdk_constraint: Optional[str] = None
    skipped: list[str] = field(default_factory=list)

    @property
    def total_packages(self) -> int:
        return len(self.results)

    def count(self, *levels: RiskLevel) -> int:
        return sum(1 for r in self.results if r.risk_level in levels)

    @property
    def critical_count(self) -> int:
        return self.count(RiskLevel.CRITICAL)

    @property
    def risky_count(self) -> int:
        return self.count(RiskLevel.RISKY)

    @property
    def warning_count(self) -> int:
        return self.count(RiskLevel.WARNING)

    @property
    def healthy_count(self) -> int:
        """Packages at HEALTHY or LOW."""
        return self.count(RiskLevel.HEALTHY, RiskLevel.LOW)

    def counts_by_level(self) -> dict[str, int]:
        return {level.value: self.count(level) for level in RiskLevel}

    @property
    def abandoned_packages(self) -> list[DiagnosisResult]:
        """Packages whose maintenance signal is at maximum risk."""
        return [
            r for r in self.results
            if any(s.signal_id == "maintenance" and s.risk >= 1.0 for s in r.signals)
        ]

    def to_dict(self) -> dict:
        return {
            "scanned_at": self.scanned_at.isoformat(),
            "sdk_version": str(self.sdk_version) if self.sdk_version else None,
            "project_sdk_constraint": self.project_sdk_constraint,
            "summary": {
                "total": self.total_packages,
                "by_level": self.counts_by_level(),
                "abandoned": [r.package_name for r in self.abandoned_packages],
                "skipped": list(self.skipped),
            },
            "results": [r.to_dict() for r in self.results],
        }
