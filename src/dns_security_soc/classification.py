"""Heuristic threat classification.

Everything in this module is a best-effort heuristic driven by the tables in
config.yml, not a detection engine. The ingestor depends only on the
ThreatClassifier interface so a real taxonomy can replace KeywordClassifier.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import lru_cache

from .yaml_config import get_heuristics


@dataclass(frozen=True)
class HeuristicTables:
    blocked_decisions: frozenset[str]
    base_risk_score: int
    max_risk_score: int
    keyword_bonuses: tuple[tuple[str, int], ...]
    default_threat_category: str
    suspicious_cname_markers: tuple[str, ...]
    application_hints: tuple[tuple[str, tuple[str, ...]], ...] = ()


@lru_cache(maxsize=1)
def load_tables() -> HeuristicTables:
    cfg = get_heuristics()
    return HeuristicTables(
        blocked_decisions=frozenset(str(d) for d in cfg.get("blocked_decisions", [])),
        base_risk_score=int(cfg.get("base_risk_score", 80)),
        max_risk_score=int(cfg.get("max_risk_score", 100)),
        keyword_bonuses=tuple(
            (k.lower(), int(v)) for k, v in cfg.get("keyword_bonuses", {}).items()
        ),
        default_threat_category=cfg.get("default_threat_category", "Suspicious"),
        suspicious_cname_markers=tuple(cfg.get("suspicious_cname_markers", [])),
        application_hints=tuple(
            (hint["name"], tuple(k.lower() for k in hint.get("keywords", [])))
            for hint in cfg.get("application_hints", [])
        ),
    )


class ThreatClassifier(ABC):
    @abstractmethod
    def is_blocked(self, decision: str | int | None) -> bool:
        """Whether the resolver decision code denotes a blocked query."""

    @abstractmethod
    def threat_category(self, category_names: list[str] | None) -> str | None:
        """Pick the security-relevant category, if any."""

    @abstractmethod
    def risk_score(self, blocked: bool, threat_category: str | None) -> int:
        """Score in [0, 100]."""

    @abstractmethod
    def infer_application(self, domain: str) -> str | None:
        """Best guess at the application behind a domain."""

    @property
    @abstractmethod
    def default_category(self) -> str:
        """Category given to high-risk activity with no matching category."""


class KeywordClassifier(ThreatClassifier):
    def __init__(self, tables: HeuristicTables | None = None) -> None:
        self.tables = tables or load_tables()

    @property
    def default_category(self) -> str:
        return self.tables.default_threat_category

    def is_blocked(self, decision: str | int | None) -> bool:
        if decision is None:
            return False
        return str(decision) in self.tables.blocked_decisions

    def threat_category(self, category_names: list[str] | None) -> str | None:
        if not category_names:
            return None
        keywords = [k for k, _ in self.tables.keyword_bonuses]
        for name in category_names:
            lowered = name.lower()
            if any(k in lowered for k in keywords):
                return name
        return None

    def risk_score(self, blocked: bool, threat_category: str | None) -> int:
        if not blocked:
            return 0
        score = self.tables.base_risk_score
        if threat_category:
            lowered = threat_category.lower()
            # Bonuses stack when a category name contains several keywords.
            for keyword, bonus in self.tables.keyword_bonuses:
                if keyword in lowered:
                    score += bonus
        return max(0, min(score, self.tables.max_risk_score))

    def infer_application(self, domain: str) -> str | None:
        lowered = domain.lower()
        for name, keywords in self.tables.application_hints:
            if any(k in lowered for k in keywords):
                return name
        return None
