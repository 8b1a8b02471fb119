from datetime import datetime

from pydantic import BaseModel


class SystemHealthOut(BaseModel):
    ok: bool
    env: str
    time_utc: datetime
    store_backend: str
    channels: list[str]
    scheduler_enabled: bool
    dispatches_in_flight: int
