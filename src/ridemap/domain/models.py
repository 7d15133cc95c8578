"""
Domain models (Pydantic).

These types represent the stable "contract" between layers:
- inputs from location services and the driver listing (`Coordinate`, `Driver`)
- derived map entities (`Marker`, `Region`, `RouteResult`)
- the rendering-surface wire protocol (`Snapshot`, `UpdateMapMessage`,
  `UpdateEstimatesMessage`, inbound messages)

Wire messages keep the camelCase field names the rendering surfaces already speak
(`userLocation`, `mapReady`, ...); Python code uses snake_case attributes.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ridemap.core.geo import is_valid_lat_lng


class Coordinate(BaseModel):
    """A latitude/longitude pair in WGS84 degrees.

    No range validation on construction: NaN or out-of-range values are accepted
    and reported by `is_valid()` so callers can treat them as "unknown".
    """

    latitude: float
    longitude: float
    address: str | None = None

    def is_valid(self) -> bool:
        return is_valid_lat_lng(self.latitude, self.longitude)


def known(coord: Coordinate | None) -> bool:
    """True when `coord` is present and usable."""
    return coord is not None and coord.is_valid()


class LatLng(BaseModel):
    """Wire-format point used by route paths and surface messages."""

    lat: float
    lng: float


class Driver(BaseModel):
    """One record of the driver listing. Carries no position."""

    model_config = ConfigDict(extra="allow")

    id: str | int | None = None
    first_name: str | None = None
    last_name: str | None = None
    car_seats: int | None = None
    profile_image_url: str | None = None
    car_image_url: str | None = None
    rating: float | None = None


class Marker(BaseModel):
    """A driver placed on the map; `time`/`price`/`route_path` are set by the estimator."""

    model_config = ConfigDict(extra="allow")

    id: str | int
    latitude: float
    longitude: float
    title: str = ""
    time: int | None = None
    price: str | None = None
    route_path: list[LatLng] | None = None


class Region(BaseModel):
    """Viewport center and span."""

    latitude: float
    longitude: float
    latitude_delta: float = Field(..., ge=0)
    longitude_delta: float = Field(..., ge=0)


class RouteResult(BaseModel):
    """Display route between rider and destination plus the provider that produced it."""

    provider: Literal["geoapify", "openrouteservice", "straight_line"]
    path: list[LatLng]
    time_seconds: float | None = None


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SnapshotMarker(_WireModel):
    id: str | int
    lat: float
    lng: float
    title: str = "Driver"
    selected: bool = False


class Snapshot(_WireModel):
    """Everything a rendering surface needs to draw one frame."""

    user_location: LatLng
    markers: list[SnapshotMarker] = Field(default_factory=list)
    destination: LatLng | None = None
    route: list[LatLng] = Field(default_factory=list)


class UpdateMapMessage(_WireModel):
    type: Literal["updateMap"] = "updateMap"
    data: Snapshot


class MapReadyMessage(_WireModel):
    type: Literal["mapReady"] = "mapReady"


class MapErrorMessage(_WireModel):
    type: Literal["mapError"] = "mapError"
    error: str = "Unknown map error"

    @field_validator("error", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> str:
        return value if isinstance(value, str) else str(value)


class ContextUpdate(_WireModel):
    """Rider/destination/selection change sent by a remote surface."""

    rider: Coordinate | None = None
    destination: Coordinate | None = None
    selected_driver_id: str | int | None = None


class UpdateContextMessage(_WireModel):
    type: Literal["updateContext"] = "updateContext"
    data: ContextUpdate


InboundMessage = Annotated[
    MapReadyMessage | MapErrorMessage | UpdateContextMessage,
    Field(discriminator="type"),
]


class ReloadMessage(_WireModel):
    """Asks a remote surface to reload itself and signal `mapReady` again."""

    type: Literal["reload"] = "reload"


class DriverEstimate(_WireModel):
    """ETA and fare for one routable driver, as listed next to the map."""

    id: str | int
    title: str = "Driver"
    time: int | None = None
    price: str | None = None
    route_path: list[LatLng] = Field(default_factory=list)


class UpdateEstimatesMessage(_WireModel):
    type: Literal["updateEstimates"] = "updateEstimates"
    data: list[DriverEstimate] = Field(default_factory=list)

    @classmethod
    def from_markers(cls, markers: Iterable[Marker]) -> UpdateEstimatesMessage:
        return cls(
            data=[
                DriverEstimate(
                    id=m.id,
                    title=m.title or "Driver",
                    time=m.time,
                    price=m.price,
                    route_path=m.route_path or [],
                )
                for m in markers
            ]
        )


OutboundMessage = UpdateMapMessage | UpdateEstimatesMessage | ReloadMessage
