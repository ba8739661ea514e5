"""Data models for vehicle routing problems."""

import math
from enum import Enum

from pydantic import BaseModel, Field, model_validator

from .expressions import var
from .problem import Objective, ObjectiveDirection, Problem, ProblemType, new_id

ROUTING_METRICS = ("total_distance", "total_time", "total_cost", "vehicles_used", "unserved_demand")

EARTH_RADIUS_KM = 6371.0


class WindowType(str, Enum):
    PREFERRED = "preferred"
    REQUIRED = "required"
    FORBIDDEN = "forbidden"


class TimeWindow(BaseModel):
    """Interval on the problem's time axis (plain numbers in one unit)."""

    start: float
    end: float
    type: WindowType = WindowType.REQUIRED

    @model_validator(mode="after")
    def _check_order(self):
        if self.start > self.end:
            raise ValueError(f"time window starts at {self.start} after it ends at {self.end}")
        return self

    def contains(self, moment: float) -> bool:
        return self.start <= moment <= self.end

    def blocks(self, moment: float) -> bool:
        """True if a forbidden window rules out this moment (end excluded)."""
        return self.type == WindowType.FORBIDDEN and self.start <= moment < self.end


class Coordinates(BaseModel):
    lat: float = Field(ge=-90.0, le=90.0)
    lng: float = Field(ge=-180.0, le=180.0)


class Location(BaseModel):
    location_id: str = Field(default_factory=new_id)
    name: str = ""
    coordinates: Coordinates | None = None
    time_windows: list[TimeWindow] = Field(default_factory=list)
    service_time: float = Field(0.0, ge=0.0)


class VehicleCost(BaseModel):
    fixed: float = Field(0.0, ge=0.0, description="Cost of using the vehicle at all")
    per_distance: float = Field(0.0, ge=0.0)
    per_time: float = Field(0.0, ge=0.0)
    overtime: float = Field(0.0, ge=0.0, description="Cost per time unit beyond regular time")


class Vehicle(BaseModel):
    vehicle_id: str = Field(default_factory=new_id)
    capacity: float = Field(ge=0.0)
    max_distance: float | None = Field(None, ge=0.0)
    max_time: float | None = Field(None, ge=0.0)
    regular_time: float | None = Field(None, ge=0.0, description="Route duration before overtime")
    cost: VehicleCost = Field(default_factory=VehicleCost)
    availability: list[TimeWindow] = Field(default_factory=list)
    skills: list[str] = Field(default_factory=list)

    def shifts(self) -> list[tuple[float, float]]:
        """Working intervals; unrestricted when no availability is given."""
        shifts = [
            (window.start, window.end)
            for window in self.availability
            if window.type != WindowType.FORBIDDEN
        ]
        return shifts or [(0.0, math.inf)]


class Demand(BaseModel):
    demand_id: str = Field(default_factory=new_id)
    location_id: str
    quantity: float = Field(ge=0.0)
    priority: int = 0
    skills: list[str] = Field(default_factory=list)
    time_windows: list[TimeWindow] = Field(default_factory=list)


def haversine(a: Coordinates, b: Coordinates) -> float:
    """Great-circle distance in kilometres."""
    lat1, lat2 = math.radians(a.lat), math.radians(b.lat)
    dlat = lat2 - lat1
    dlng = math.radians(b.lng - a.lng)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


def _default_objectives() -> list[Objective]:
    return [
        Objective(
            name="total_cost",
            direction=ObjectiveDirection.MINIMIZE,
            expression=var("total_cost"),
            priority=0,
        ),
        Objective(
            name="total_distance",
            direction=ObjectiveDirection.MINIMIZE,
            expression=var("total_distance"),
            weight=0.0,
            priority=1,
            description="Tie-break after cost",
        ),
    ]


class RouteOptimizationProblem(Problem):
    """Vehicle routing problem.

    Matrices are indexed with the depot at 0 followed by ``locations`` in
    order. Objectives and constraints are expressions over the routing
    metrics (``total_distance``, ``total_time``, ``total_cost``,
    ``vehicles_used``, ``unserved_demand``); when no objective is given the
    problem minimizes total cost, then total distance.
    """

    problem_type: ProblemType = ProblemType.ROUTE_OPTIMIZATION
    depot: Location
    locations: list[Location] = Field(default_factory=list)
    vehicles: list[Vehicle] = Field(min_length=1)
    demands: list[Demand] = Field(default_factory=list)
    distance_matrix: list[list[float]] | None = None
    time_matrix: list[list[float]] | None = None

    @model_validator(mode="after")
    def _check_network(self):
        ids = [self.depot.location_id] + [location.location_id for location in self.locations]
        if len(set(ids)) != len(ids):
            raise ValueError("location ids (including the depot) must be unique")

        known = set(ids[1:])
        for demand in self.demands:
            if demand.location_id not in known:
                raise ValueError(
                    f"demand '{demand.demand_id}' references unknown location '{demand.location_id}'"
                )

        size = len(ids)
        for label, matrix in (("distance", self.distance_matrix), ("time", self.time_matrix)):
            if matrix is None:
                continue
            if len(matrix) != size or any(len(row) != size for row in matrix):
                raise ValueError(f"{label} matrix must be {size}x{size} (depot first)")
            if any(value < 0 for row in matrix for value in row):
                raise ValueError(f"{label} matrix has negative entries")

        if self.distance_matrix is None:
            missing = [
                location.location_id
                for location in [self.depot, *self.locations]
                if location.coordinates is None
            ]
            if missing:
                raise ValueError(
                    f"no distance matrix and no coordinates for locations {missing}"
                )

        if not self.objectives:
            self.objectives = _default_objectives()
        return self

    @property
    def nodes(self) -> list[Location]:
        """Depot followed by the customer locations."""
        return [self.depot, *self.locations]

    def known_symbols(self) -> set[str]:
        return super().known_symbols() | set(ROUTING_METRICS)

    def resolved_distance_matrix(self) -> list[list[float]]:
        if self.distance_matrix is not None:
            return [list(row) for row in self.distance_matrix]
        nodes = self.nodes
        return [[haversine(a.coordinates, b.coordinates) for b in nodes] for a in nodes]

    def resolved_time_matrix(self, average_speed: float) -> list[list[float]]:
        if self.time_matrix is not None:
            return [list(row) for row in self.time_matrix]
        return [[d / average_speed for d in row] for row in self.resolved_distance_matrix()]

    def demands_at(self, location_id: str) -> list[Demand]:
        return [demand for demand in self.demands if demand.location_id == location_id]
