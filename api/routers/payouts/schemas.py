import uuid
from datetime import datetime
from pydantic import BaseModel, model_validator

from api.crud.commission.schema import CommissionMetrics, CommissionRead, EarningsSummary, PayoutBatchRead  # noqa


class PayoutBatchCreate(BaseModel):
    owner_id: uuid.UUID
    period_start: datetime
    period_end: datetime

    @model_validator(mode="after")
    def check_period(self):
        if self.period_end <= self.period_start:
            raise ValueError("period_end must be after period_start")
        return self
