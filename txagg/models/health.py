from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    db_connected: bool
    total_records: int
    ingestion_state: str
    last_slot: int | None = None
