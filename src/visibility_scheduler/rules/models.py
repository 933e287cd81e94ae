from pydantic import BaseModel, ConfigDict, Field

from visibility_scheduler.domain.entities import UnpublishStatus


class NotificationRules(BaseModel):
    enabled: bool = True
    recipient: str | None = None
    sender: str | None = None
    site_name: str = "Site"
    # Placeholders: {item_id}, {item_type}
    view_url_template: str | None = None
    edit_url_template: str | None = None

class LoggingRules(BaseModel):
    enabled: bool = True

class DispatcherRules(BaseModel):
    poll_interval_seconds: float = Field(default=60.0, gt=0)
    notify_workers: int = Field(default=2, ge=1)
    notify_timeout_seconds: float = Field(default=30.0, gt=0)

class SmtpRules(BaseModel):
    host: str | None = None  # None = dev adapter (log only)
    port: int = 25
    timeout_seconds: float = Field(default=10.0, gt=0)
    use_tls: bool = False
    username: str | None = None
    password_env: str = "VS_SMTP_PASSWORD"

class OpsRules(BaseModel):
    required_env: list[str] = Field(default_factory=list)

class Rules(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled_item_types: list[str] = Field(default_factory=lambda: ["post"])
    unpublish_status: UnpublishStatus = "draft"
    # Only the request boundary consults this; due entries always fire
    allow_past_dates: bool = False
    notifications: NotificationRules = Field(default_factory=NotificationRules)
    logging: LoggingRules = Field(default_factory=LoggingRules)
    dispatcher: DispatcherRules = Field(default_factory=DispatcherRules)
    smtp: SmtpRules = Field(default_factory=SmtpRules)
    ops: OpsRules = Field(default_factory=OpsRules)

    def is_type_enabled(self, item_type: str) -> bool:
        return item_type in self.enabled_item_types
