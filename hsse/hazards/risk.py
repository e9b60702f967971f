"""
HSSE Hazards - risk scoring.

Score is probability x severity on 1-5 scales (1-25). Bands:
    1-4 VeryLow, 5-9 Low, 10-14 Medium, 15-19 High, 20-25 Critical
and the next review is due 24/12/6/3/1 months later respectively.
"""
import datetime
from enum import Enum

from hsse.db import add_months
from hsse.errors import DomainError


class RiskLevel(str, Enum):
    VERY_LOW = "VeryLow"
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class RiskAssessmentType(str, Enum):
    GENERAL = "General"
    JSA = "JSA"
    HIRA = "HIRA"
    ENVIRONMENTAL = "Environmental"
    FIRE = "Fire"


REVIEW_INTERVAL_MONTHS = {
    RiskLevel.CRITICAL: 1,
    RiskLevel.HIGH: 3,
    RiskLevel.MEDIUM: 6,
    RiskLevel.LOW: 12,
    RiskLevel.VERY_LOW: 24,
}

RISK_ORDER = [RiskLevel.VERY_LOW, RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL]


def validate_scores(probability, severity):
    for name, value in (("Probability", probability), ("Severity", severity)):
        if not isinstance(value, int) or isinstance(value, bool) or not 1 <= value <= 5:
            raise DomainError(f"{name} score must be between 1 and 5")


def calculate_risk_score(probability: int, severity: int) -> int:
    validate_scores(probability, severity)
    return probability * severity


def determine_risk_level(score: int) -> RiskLevel:
    if score >= 20:
        return RiskLevel.CRITICAL
    if score >= 15:
        return RiskLevel.HIGH
    if score >= 10:
        return RiskLevel.MEDIUM
    if score >= 5:
        return RiskLevel.LOW
    return RiskLevel.VERY_LOW


def next_review_date(level: RiskLevel, from_date: datetime.date = None) -> datetime.date:
    return add_months(from_date or datetime.date.today(), REVIEW_INTERVAL_MONTHS[RiskLevel(level)])


def is_high_risk(level) -> bool:
    return RISK_ORDER.index(RiskLevel(level)) >= RISK_ORDER.index(RiskLevel.HIGH)
