from pydantic import BaseModel, Field


class JoinRequest(BaseModel):
    timezone_bucket: str
    display_name: str | None = None


class ReportRequest(BaseModel):
    reported_user_id: str
    pairing_id: int | None = None


class TenantSetupRequest(BaseModel):
    announcements_channel_id: str
    pairings_channel_id: str
    moderator_role_id: str | None = None
    ping_role_id: str | None = None


class ScheduleUpdate(BaseModel):
    day_of_week: int
    start_hour: int
    end_hour: int


class AdminSignupRequest(BaseModel):
    user_id: str
    timezone_bucket: str
    display_name: str | None = None


class ManualPairingRequest(BaseModel):
    user_ids: list[str] = Field(default_factory=list)
    slot_number: int = 1


class PunishRequest(BaseModel):
    user_id: str
    report_id: int | None = None


class PresenceEvent(BaseModel):
    tenant_id: str
    user_id: str
