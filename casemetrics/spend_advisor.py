"""
Spend Advisor v1.0
最优日预算建议 — 可插拔效率曲线策略 + 历史回归拟合 + 置信度/紧急度分级

Features:
- SpendStrategy: pluggable efficiency model behind a single estimate() call
- DiminishingReturnsStrategy: power-curve revenue model R(s) = k * s^alpha
- HistoryRegressionStrategy: log / quadratic / linear leads-vs-spend fit (best R²)
- SpendAdvisor: first strategy with an answer wins; zero spend → no recommendation
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from casemetrics.aggregator import Aggregator
from casemetrics.metrics import safe_div
from casemetrics.periods import Period
from casemetrics.records import StatRecord, coerce_amount, parse_stat_date

logger = logging.getLogger(__name__)

# 与当前预算相差10%以内视为最优区间
MAINTAIN_BAND = 0.10


class RecommendationAction(str, Enum):
    INCREASE = "increase"
    MAINTAIN = "maintain"
    DECREASE = "decrease"


class Urgency(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class SpendRecommendation:
    """预算建议"""
    optimal_spend: float
    recommendation: RecommendationAction
    confidence: float
    projected_lead_increase: float = 0.0
    message: str = ""
    urgency: Urgency = Urgency.LOW
    analysis_type: str = "basic"
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "optimal_spend": self.optimal_spend,
            "recommendation": self.recommendation.value,
            "confidence": self.confidence,
            "projected_lead_increase": self.projected_lead_increase,
            "message": self.message,
            "urgency": self.urgency.value,
            "analysis_type": self.analysis_type,
            "details": dict(self.details),
        }


def classify_spend(optimal: float, current: float) -> Tuple[RecommendationAction, str]:
    difference = optimal - current
    if abs(difference) < current * MAINTAIN_BAND:
        return RecommendationAction.MAINTAIN, "Optimal spend range"
    if difference > 0:
        return RecommendationAction.INCREASE, f"Increase by ${round(difference):,}/day"
    return RecommendationAction.DECREASE, f"Decrease by ${round(abs(difference)):,}/day"


def classify_urgency(action: RecommendationAction, efficiency: float) -> Urgency:
    if efficiency < 1:
        return Urgency.HIGH
    if action == RecommendationAction.MAINTAIN:
        return Urgency.LOW
    return Urgency.MEDIUM


class SpendStrategy(ABC):
    """预算效率模型"""

    name = "base"

    @abstractmethod
    def estimate(self, current_spend: float, current_efficiency: float,
                 history: Sequence[StatRecord] = (),
                 leads_per_dollar: float = 0.0) -> Optional[SpendRecommendation]:
        """返回建议; 模型无法给出结论时返回None"""


class DiminishingReturnsStrategy(SpendStrategy):
    """
    收益递减模型.

    Revenue follows R(s) = k * s^alpha, calibrated so that R(current) equals
    current * efficiency. The profit-optimal spend is where marginal revenue
    per dollar equals 1, clamped to ±max_change of the current spend.
    """

    name = "diminishing_returns"

    def __init__(self, alpha: float = 0.8, max_change: float = 0.5):
        if not 0 < alpha < 1:
            raise ValueError("alpha must be between 0 and 1")
        self.alpha = alpha
        self.max_change = max_change

    def marginal_return(self, spend: float, current_spend: float,
                        current_efficiency: float) -> float:
        """spend处每多花1美元带来的收入"""
        ratio = safe_div(spend, current_spend)
        if ratio <= 0:
            return 0.0
        return self.alpha * current_efficiency * ratio ** (self.alpha - 1)

    def estimate(self, current_spend: float, current_efficiency: float,
                 history: Sequence[StatRecord] = (),
                 leads_per_dollar: float = 0.0) -> Optional[SpendRecommendation]:
        if current_spend <= 0:
            return None
        efficiency = max(current_efficiency, 0.0)
        marginal_now = self.alpha * efficiency

        ratio = marginal_now ** (1 / (1 - self.alpha))
        ratio = min(max(ratio, 1 - self.max_change), 1 + self.max_change)
        optimal = current_spend * ratio

        projected = leads_per_dollar * current_spend * (ratio ** self.alpha - 1)
        action, message = classify_spend(optimal, current_spend)

        return SpendRecommendation(
            optimal_spend=round(optimal, 2),
            recommendation=action,
            confidence=round(min(abs(marginal_now - 1), 1.0) * 100, 1),
            projected_lead_increase=round(projected, 1),
            message=message,
            urgency=classify_urgency(action, efficiency),
            analysis_type="basic",
            details={
                "model": self.name,
                "alpha": self.alpha,
                "marginal_return": round(marginal_now, 4),
            },
        )


@dataclass
class RegressionModel:
    """拟合模型"""
    kind: str
    coefficients: List[float]
    r_squared: float
    predict: Callable[[float], float]


def _linear_fit(points: List[Tuple[float, float]]) -> Tuple[float, float, float]:
    """最小二乘直线, 返回 (slope, intercept, r²)"""
    n = len(points)
    sum_x = sum(p[0] for p in points)
    sum_y = sum(p[1] for p in points)
    sum_xy = sum(p[0] * p[1] for p in points)
    sum_xx = sum(p[0] * p[0] for p in points)

    denominator = n * sum_xx - sum_x * sum_x
    slope = (n * sum_xy - sum_x * sum_y) / denominator if denominator else 0.0
    intercept = (sum_y - slope * sum_x) / n
    return slope, intercept, _r_squared(points, lambda x: slope * x + intercept)


def _r_squared(points: List[Tuple[float, float]], predict: Callable[[float], float]) -> float:
    y_mean = sum(p[1] for p in points) / len(points)
    ss_res = sum((y - predict(x)) ** 2 for x, y in points)
    ss_tot = sum((y - y_mean) ** 2 for _, y in points)
    if ss_tot == 0:
        return 0.0
    return max(0.0, 1 - ss_res / ss_tot)


def _solve3(matrix: List[List[float]], vector: List[float]) -> Optional[List[float]]:
    """3x3线性方程组 (高斯消元), 奇异时返回None"""
    a = [row[:] + [v] for row, v in zip(matrix, vector)]
    for col in range(3):
        pivot = max(range(col, 3), key=lambda r: abs(a[r][col]))
        if abs(a[pivot][col]) < 1e-10:
            return None
        a[col], a[pivot] = a[pivot], a[col]
        for r in range(col + 1, 3):
            factor = a[r][col] / a[col][col]
            for c in range(col, 4):
                a[r][c] -= factor * a[col][c]
    solution = [0.0, 0.0, 0.0]
    for r in range(2, -1, -1):
        solution[r] = (a[r][3] - sum(a[r][c] * solution[c] for c in range(r + 1, 3))) / a[r][r]
    return solution


class HistoryRegressionStrategy(SpendStrategy):
    """基于历史数据的线索-花费回归模型"""

    name = "history_regression"

    def __init__(self, min_rows: int = 10, max_rows: int = 60,
                 min_spread: float = 0.2, min_r_squared: float = 0.4,
                 grid_steps: int = 20):
        self.min_rows = min_rows
        self.max_rows = max_rows
        self.min_spread = min_spread
        self.min_r_squared = min_r_squared
        self.grid_steps = grid_steps

    def _points(self, history: Iterable[StatRecord]) -> List[Tuple[float, float]]:
        rows = []
        for record in history:
            day = parse_stat_date(record.date)
            spend = coerce_amount(record.ad_spend)
            leads = coerce_amount(record.leads)
            if day is None or not spend or leads is None:
                continue
            rows.append((day, spend, leads))
        rows.sort(key=lambda r: r[0], reverse=True)
        return [(spend, leads) for _, spend, leads in rows[:self.max_rows]]

    def fit_logarithmic(self, points: List[Tuple[float, float]]) -> RegressionModel:
        slope, intercept, r2 = _linear_fit([(math.log(x), y) for x, y in points])
        return RegressionModel(
            kind="logarithmic", coefficients=[slope, intercept], r_squared=r2,
            predict=lambda s: max(0.0, slope * math.log(s) + intercept) if s > 0 else 0.0,
        )

    def fit_linear(self, points: List[Tuple[float, float]]) -> RegressionModel:
        slope, intercept, r2 = _linear_fit(points)
        return RegressionModel(
            kind="linear", coefficients=[slope, intercept], r_squared=r2,
            predict=lambda s: max(0.0, slope * s + intercept),
        )

    def fit_quadratic(self, points: List[Tuple[float, float]]) -> RegressionModel:
        n = len(points)
        sx = [sum(x ** k for x, _ in points) for k in range(5)]
        sxy = [sum((x ** k) * y for x, y in points) for k in range(3)]
        solution = _solve3(
            [[sx[4], sx[3], sx[2]], [sx[3], sx[2], sx[1]], [sx[2], sx[1], float(n)]],
            [sxy[2], sxy[1], sxy[0]],
        )
        if solution is None:
            return self.fit_linear(points)
        a, b, c = solution
        return RegressionModel(
            kind="quadratic", coefficients=[a, b, c],
            r_squared=_r_squared(points, lambda x: a * x * x + b * x + c),
            predict=lambda s: max(0.0, a * s * s + b * s + c),
        )

    @staticmethod
    def marginal_leads(model: RegressionModel, spend: float) -> float:
        delta = spend * 0.01
        if delta <= 0:
            return 0.0
        return (model.predict(spend + delta) - model.predict(spend)) / delta

    def optimal_spend(self, model: RegressionModel, min_spend: float, max_spend: float) -> float:
        if model.kind == "quadratic":
            a, b = model.coefficients[0], model.coefficients[1]
            if a < 0:
                return max(min_spend, min(max_spend, -b / (2 * a)))

        step = (max_spend - min_spend) / self.grid_steps
        best_spend, best_efficiency = min_spend, 0.0
        for i in range(self.grid_steps + 1):
            spend = min_spend + i * step
            efficiency = safe_div(self.marginal_leads(model, spend), spend)
            if efficiency > best_efficiency:
                best_spend, best_efficiency = spend, efficiency
        return best_spend

    def estimate(self, current_spend: float, current_efficiency: float,
                 history: Sequence[StatRecord] = (),
                 leads_per_dollar: float = 0.0) -> Optional[SpendRecommendation]:
        if current_spend <= 0:
            return None
        points = self._points(history)
        if len(points) < self.min_rows:
            logger.debug(f"Regression skipped: {len(points)} rows < {self.min_rows}")
            return None

        spends = [x for x, _ in points]
        min_spend, max_spend = min(spends), max(spends)
        if max_spend - min_spend < min_spend * self.min_spread:
            logger.debug("Regression skipped: insufficient spend variation")
            return None

        models = [self.fit_logarithmic(points), self.fit_quadratic(points), self.fit_linear(points)]
        best = max(models, key=lambda m: m.r_squared)
        if best.r_squared < self.min_r_squared:
            logger.debug(f"Regression skipped: best fit {best.kind} r²={best.r_squared:.3f}")
            return None

        optimal = self.optimal_spend(best, min_spend, max_spend)
        optimal_leads = best.predict(optimal)
        current_leads = best.predict(current_spend)
        action, message = classify_spend(optimal, current_spend)

        return SpendRecommendation(
            optimal_spend=round(optimal, 2),
            recommendation=action,
            confidence=round(best.r_squared * 100, 1),
            projected_lead_increase=round(optimal_leads - current_leads, 1),
            message=message,
            urgency=classify_urgency(action, current_efficiency),
            analysis_type="advanced",
            details={
                "model": best.kind,
                "r_squared": round(best.r_squared, 4),
                "efficiency_pct": round(min(safe_div(current_leads, optimal_leads) * 100, 100), 1),
                "marginal_leads_per_dollar": round(self.marginal_leads(best, current_spend), 4),
                "rows": len(points),
            },
        )


class SpendAdvisor:
    """预算建议器: 依次尝试策略, 第一个有结论的胜出"""

    def __init__(self, strategies: Optional[List[SpendStrategy]] = None,
                 aggregator: Optional[Aggregator] = None):
        self.strategies = strategies or [DiminishingReturnsStrategy()]
        self.aggregator = aggregator or Aggregator()

    def recommend(self, current_spend: float, current_efficiency: float,
                  history: Sequence[StatRecord] = (),
                  leads_per_dollar: float = 0.0) -> Optional[SpendRecommendation]:
        if not current_spend or current_spend <= 0:
            logger.debug("No spend data, skipping recommendation")
            return None
        for strategy in self.strategies:
            result = strategy.estimate(current_spend, current_efficiency,
                                       history, leads_per_dollar)
            if result is not None:
                return result
        return None

    def recommend_for(self, records: Iterable[StatRecord],
                      period: Period) -> Optional[SpendRecommendation]:
        """用周期日均值作为当前预算"""
        records = list(records)
        averages = self.aggregator.daily_averages(records, period, exclude_today=False)
        totals = averages.totals
        return self.recommend(
            current_spend=totals.ad_spend,
            current_efficiency=averages.metrics.roi / 100,
            history=records,
            leads_per_dollar=safe_div(totals.leads, totals.ad_spend),
        )
