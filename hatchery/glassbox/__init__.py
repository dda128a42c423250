"""
Glass Box - 交易透明度

每笔交易附带推理、匹配条件、置信度因子、风险分析和审计轨迹。
"""
from .builder import (
    GlassBoxBuilder,
    assess_risk,
    confidence_total,
    create_full_glass_box,
    create_minimal_glass_box,
)
from .models import AuditInputs, AuditStep, GlassBox, RiskLevel

__all__ = [
    "GlassBoxBuilder",
    "assess_risk",
    "confidence_total",
    "create_full_glass_box",
    "create_minimal_glass_box",
    "AuditInputs",
    "AuditStep",
    "GlassBox",
    "RiskLevel",
]
