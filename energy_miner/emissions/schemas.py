"""
Pydantic schemas for WattTime API responses.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class GenMix(BaseModel):
    """Generation by fuel type."""

    fuel: Optional[str] = None
    gen_MW: Optional[float] = None

    model_config = {"extra": "allow"}


class MarginalCarbon(BaseModel):
    """Marginal carbon value with its unit label (v1 reports lb/MW)."""

    value: Optional[float] = None
    units: Optional[str] = None
    structural_model: Optional[str] = None

    model_config = {"extra": "allow"}


class MarginalCarbonResult(BaseModel):
    """One entry of the v1 marginal/ endpoint."""

    timestamp: datetime
    ba: Optional[str] = None
    market: Optional[str] = None
    freq: Optional[str] = None
    marginal_carbon: Optional[MarginalCarbon] = None
    genmix: Optional[List[GenMix]] = None

    model_config = {"extra": "allow"}


class GenerationMixResult(BaseModel):
    """One entry of the v1 datapoints/ endpoint. carbon is system-wide, lb/MW."""

    timestamp: datetime
    ba: Optional[str] = None
    market: Optional[str] = None
    freq: Optional[str] = None
    carbon: Optional[float] = None
    genmix: Optional[List[GenMix]] = None

    model_config = {"extra": "allow"}


class MarginalCarbonV2Point(BaseModel):
    """One entry of the v2 data/ and forecast/ endpoints. value is lbs/MWh."""

    point_time: datetime
    value: Optional[float] = None
    ba: Optional[str] = None
    datatype: Optional[str] = None
    frequency: Optional[int] = None
    market: Optional[str] = None

    model_config = {"extra": "allow"}


class RelativeMeritIndex(BaseModel):
    """Response of the v2 index/ endpoint."""

    ba: Optional[str] = None
    freq: Optional[str] = None
    rating: Optional[int] = None
    percent: float
    switch: Optional[int] = None
    market: Optional[str] = None
    valid_until: datetime = Field(alias="validUntil")
    valid_for: Optional[int] = Field(default=None, alias="validFor")

    model_config = {"extra": "allow", "populate_by_name": True}


class LoginResponse(BaseModel):
    """Response of the v2 login/ endpoint."""

    token: str

    model_config = {"extra": "allow"}
