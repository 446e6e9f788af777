from typing import Optional

from pydantic import BaseModel, ConfigDict


class RedirectPlanResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    subject_id: str
    primary_url: str
    secondary_url: Optional[str] = None
    redirect_type: str
    resource_version: int
    resource_status: str
    display_name: str
    event_id: Optional[str] = None
