"""System report: the totals an administrator sees on the analytics screen."""

from datetime import date

from bloodbank.fulfillment import RequestLog
from bloodbank.ledger import InventoryLedger, StockWarning
from bloodbank.models import RequestStatus
from bloodbank.profiles import ProfileDirectory
from bloodbank.serology import TypingWorkflow


def build_report(
    ledger: InventoryLedger,
    directory: ProfileDirectory,
    requests: RequestLog,
    typing: TypingWorkflow,
    today: date | None = None,
) -> dict:
    lines = ledger.snapshot(today)
    history = requests.list()
    return {
        **directory.counts(),
        **typing.counts(),
        "inventory": ledger.totals(),
        "requests": {
            "total": len(history),
            "fulfilled": sum(1 for r in history if r.status is RequestStatus.FULFILLED),
            "pending": sum(1 for r in history if r.status is RequestStatus.PENDING),
        },
        "alerts": {
            warning.value: [line.record.label for line in lines if warning in line.warnings]
            for warning in (StockWarning.LOW_STOCK, StockWarning.EXPIRING_SOON, StockWarning.BLOCKED)
        },
        "fully_blocked": ledger.is_fully_blocked(),
    }
