"""Wire the ledger, directory, request log and typing workflow over one data directory."""

import logging
from dataclasses import dataclass
from datetime import date
from pathlib import Path

from bloodbank import config
from bloodbank.fulfillment import FulfillmentEngine, RequestLog
from bloodbank.ledger import InventoryLedger
from bloodbank.profiles import ProfileDirectory
from bloodbank.reports import build_report
from bloodbank.serology import TypingWorkflow

logger = logging.getLogger("bloodbank")


@dataclass
class BloodBank:
    data_dir: Path
    ledger: InventoryLedger
    directory: ProfileDirectory
    requests: RequestLog
    engine: FulfillmentEngine
    typing: TypingWorkflow

    def report(self, today: date | None = None) -> dict:
        return build_report(self.ledger, self.directory, self.requests, self.typing, today)

    def reload(self) -> None:
        """Re-read every table from disk (the recovery step after a StorageError)."""
        self.ledger.reload()
        self.directory.reload()
        self.typing.reload()


def open_bank(data_dir: str | Path | None = None) -> BloodBank:
    data_dir = Path(data_dir or config.DATA_DIR)
    data_dir.mkdir(parents=True, exist_ok=True)
    ledger = InventoryLedger(data_dir / config.INVENTORY_FILE)
    directory = ProfileDirectory(data_dir)
    requests = RequestLog(data_dir / config.REQUESTS_FILE)
    typing = TypingWorkflow(data_dir / config.TESTS_FILE, directory)
    logger.info("Blood bank opened at %s (%d inventory records)", data_dir, len(ledger))
    return BloodBank(
        data_dir=data_dir,
        ledger=ledger,
        directory=directory,
        requests=requests,
        engine=FulfillmentEngine(ledger, directory, requests),
        typing=typing,
    )
