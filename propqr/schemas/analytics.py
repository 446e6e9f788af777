from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class DistributionEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    key: str
    count: int
    percentage: float


class ScanEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    event_id: str
    subject_id: str
    resource_version: int
    resource_status: str
    flagged: bool
    occurred_at: datetime
    source: str
    redirect_type: str
    device_class: str
    platform: str
    browser: str
    geo_country: str
    geo_region: str


class TrendPoint(BaseModel):
    date: str
    scans: int


class PeriodComparison(BaseModel):
    days: int
    current_period: int
    previous_period: int
    change_percent: float


class SubjectAnalyticsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    subject_id: str
    total_scans: int
    flagged_scans: int
    scans_by_source: Dict[str, int]
    scans_by_redirect_type: Dict[str, int]
    device_distribution: List[DistributionEntryResponse]
    geo_distribution: List[DistributionEntryResponse]
    daily_scans: Dict[str, int]
    first_scanned_at: Optional[datetime] = None
    last_scanned_at: Optional[datetime] = None
    recent_scans: List[ScanEventResponse] = []
    trends: List[TrendPoint] = []
    period_comparison: Optional[PeriodComparison] = None


class SystemAnalyticsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_scans: int
    flagged_scans: int
    scans_by_source: Dict[str, int]
    scans_by_redirect_type: Dict[str, int]
    device_distribution: List[DistributionEntryResponse]
    geo_distribution: List[DistributionEntryResponse]
    daily_scans: Dict[str, int]
    first_scanned_at: Optional[datetime] = None
    last_scanned_at: Optional[datetime] = None
    generation_success: int
    generation_failure: int
    generation_failure_rate: float
    top_subjects: List[DistributionEntryResponse]
    resources_by_status: Dict[str, int]
    period_comparison: Optional[PeriodComparison] = None
