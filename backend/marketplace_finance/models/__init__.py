# Import models here so Alembic can discover metadata.
from marketplace_finance.models.rate_schedule_version import RateScheduleVersion  # noqa: F401
from marketplace_finance.models.commission_history import CommissionHistoryEntry  # noqa: F401

# Commission stamping + adjustments
from marketplace_finance.models.commission_record import CommissionRecord  # noqa: F401
from marketplace_finance.models.commission_adjustment import CommissionAdjustment  # noqa: F401

# Payout queue + batches
from marketplace_finance.models.payout_queue_item import PayoutQueueItem  # noqa: F401
from marketplace_finance.models.payout_batch import PayoutBatch  # noqa: F401
