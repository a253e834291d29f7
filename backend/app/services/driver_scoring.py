"""
Driver scoring for trip assignment.

Every candidate driver gets five sub-scores on a 0-10 scale:

- workload: fewer in-flight trips is better (2 points per trip)
- distance: closer to the pickup is better (0 at 30+ miles)
- experience: months since employment start (maxes out at 30 months)
- performance: on-time rate, rating and cancellations (needs > 5 trips)
- availability: stepped bonus for idle drivers

The total is the weighted sum of the sub-scores, each weight a percentage.
Higher totals win.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field

from backend.app.core.clock import utcnow
from backend.app.models.enums import ProfileStatus
from backend.app.services.driver_performance import DriverPerformance, months_employed
from backend.app.services.geo import haversine_miles

logger = logging.getLogger(__name__)

# Sub-scores used when the input needed for the real formula is missing
NO_DRIVER_LOCATION_SCORE = 3.0
NO_PICKUP_LOCATION_SCORE = 5.0
UNKNOWN_EXPERIENCE_SCORE = 5.0
INSUFFICIENT_HISTORY_SCORE = 5.0

# Performance history is only trusted above this many trips
MIN_TRIPS_FOR_PERFORMANCE = 5

AVAILABILITY_SCORES = {0: 10.0, 1: 7.0, 2: 4.0}
BUSY_AVAILABILITY_SCORE = 2.0


class ScoringWeights(BaseModel):
    """Percent weight of each sub-score. They need not add up to 100."""
    workload: float = Field(30, ge=0, le=100)
    distance: float = Field(25, ge=0, le=100)
    experience: float = Field(20, ge=0, le=100)
    performance: float = Field(15, ge=0, le=100)
    availability: float = Field(10, ge=0, le=100)


@dataclass
class DriverScore:
    driver_id: int
    driver_name: str
    workload: int
    workload_score: float
    distance_score: float
    experience_score: float
    performance_score: float
    availability_score: float
    total_score: float
    distance_miles: Optional[float] = None

    def as_dict(self) -> dict:
        return asdict(self)


def workload_score(workload: int) -> float:
    return max(0.0, 10.0 - workload * 2)


def availability_score(workload: int) -> float:
    return AVAILABILITY_SCORES.get(workload, BUSY_AVAILABILITY_SCORE)


def distance_score(trip, driver) -> Tuple[float, Optional[float]]:
    """Returns (score, miles); miles is None when it could not be computed."""
    if driver.current_latitude is None or driver.current_longitude is None:
        return NO_DRIVER_LOCATION_SCORE, None
    if trip.pickup_lat is None or trip.pickup_lng is None:
        return NO_PICKUP_LOCATION_SCORE, None

    miles = haversine_miles(
        trip.pickup_lat, trip.pickup_lng,
        driver.current_latitude, driver.current_longitude
    )
    return max(0.0, 10.0 - miles / 3), miles


def experience_score(driver, today: date) -> float:
    if driver.first_start_date is None:
        return UNKNOWN_EXPERIENCE_SCORE
    return min(10.0, months_employed(driver.first_start_date, today) / 3)


def performance_score(performance: Optional[DriverPerformance]) -> float:
    if performance is None or performance.total_trips <= MIN_TRIPS_FOR_PERFORMANCE:
        return INSUFFICIENT_HISTORY_SCORE
    return (
        performance.on_time_rate * 4
        + (performance.average_rating / 5) * 3
        + (1 - performance.cancellation_rate) * 3
    )


def score_driver(
    trip,
    driver,
    workload: int,
    performance: Optional[DriverPerformance],
    weights: ScoringWeights,
    today: Optional[date] = None,
) -> DriverScore:
    """
    Score one candidate driver for one trip.

    Args:
        trip: Object exposing pickup_lat / pickup_lng (either may be None)
        driver: Object exposing id, full_name, current_latitude,
            current_longitude and first_start_date
        workload: Driver's in-flight trip count
        performance: Driver's aggregated history, if any
        weights: Percent weights applied to the sub-scores
        today: Reference date for experience (defaults to today, UTC)
    """
    today = today or utcnow().date()

    w_score = workload_score(workload)
    d_score, miles = distance_score(trip, driver)
    e_score = experience_score(driver, today)
    p_score = performance_score(performance)
    a_score = availability_score(workload)

    total = (
        w_score * weights.workload / 100
        + d_score * weights.distance / 100
        + e_score * weights.experience / 100
        + p_score * weights.performance / 100
        + a_score * weights.availability / 100
    )

    return DriverScore(
        driver_id=driver.id,
        driver_name=driver.full_name,
        workload=workload,
        workload_score=w_score,
        distance_score=d_score,
        experience_score=e_score,
        performance_score=p_score,
        availability_score=a_score,
        total_score=total,
        distance_miles=miles,
    )


def _is_candidate(driver) -> bool:
    status = getattr(driver, "status", ProfileStatus.ACTIVE)
    return ProfileStatus(status) == ProfileStatus.ACTIVE


def score_candidates(
    trip,
    drivers: Iterable,
    workloads: Dict[int, int],
    performance: Dict[int, DriverPerformance],
    weights: ScoringWeights,
    today: Optional[date] = None,
) -> List[Tuple[object, DriverScore]]:
    """Score every active driver, in roster order."""
    return [
        (
            driver,
            score_driver(
                trip, driver, workloads.get(driver.id, 0), performance.get(driver.id), weights, today
            ),
        )
        for driver in drivers
        if _is_candidate(driver)
    ]


def rank_drivers(
    trip,
    drivers: Iterable,
    workloads: Dict[int, int],
    performance: Dict[int, DriverPerformance],
    weights: ScoringWeights,
    today: Optional[date] = None,
) -> List[DriverScore]:
    """All candidate scores, best first (ties keep roster order)."""
    scored = score_candidates(trip, drivers, workloads, performance, weights, today)
    return sorted((score for _, score in scored), key=lambda s: s.total_score, reverse=True)


def find_best_driver(
    trip,
    drivers: Iterable,
    workloads: Dict[int, int],
    performance: Dict[int, DriverPerformance],
    weights: ScoringWeights,
    today: Optional[date] = None,
    explain: bool = False,
):
    """
    Pick the highest scoring active driver for a trip.

    The first driver reaching the best score wins ties. An empty roster is
    not an error.

    Returns:
        (driver or None, list of DriverScore in roster order)
    """
    scored = score_candidates(trip, drivers, workloads, performance, weights, today)

    best_driver = None
    best_score = float("-inf")
    for driver, score in scored:
        if score.total_score > best_score:
            best_score = score.total_score
            best_driver = driver

    scores = [score for _, score in scored]

    if explain and best_driver is not None:
        top = sorted(scores, key=lambda s: s.total_score, reverse=True)[:3]
        logger.info(
            "AI-enhanced scheduling decision",
            extra={
                "trip_id": getattr(trip, "id", None),
                "selected_driver": best_driver.full_name,
                "score": round(best_score, 4),
                "top_scores": [s.as_dict() for s in top],
            }
        )

    return best_driver, scores
