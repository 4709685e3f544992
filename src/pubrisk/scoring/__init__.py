"""Risk scoring engine."""

from pubrisk.scoring.engine import RiskScorer, aggregate_score
from pubrisk.scoring.factors import DiagnosisResult, ProjectDiagnosis, RiskLevel, SignalResult
from pubrisk.scoring.signals import SIGNALS, WEIGHTS, Signal, SignalContext, SignalId, evaluate_signal

__all__ = [
    "DiagnosisResult",
    "ProjectDiagnosis",
    "RiskLevel",
    "RiskScorer",
    "SIGNALS",
    "Signal",
    "SignalContext",
    "SignalId",
    "SignalResult",
    "WEIGHTS",
    "aggregate_score",
    "evaluate_signal",
]
