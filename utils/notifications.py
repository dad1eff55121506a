# utils/notifications.py
import requests

from utils.logging_utils import get_logger

logger = get_logger("payment_events")


class PaymentObserver:
    """Receives the terminal outcome of every task payment job."""

    def on_completed(self, outcome):
        pass

    def on_failed(self, outcome):
        pass


class AlertSink:
    """Receives operational alerts raised by the sweeps."""

    def low_balance(self, project_id, balance, threshold):
        pass

    def stale_transaction(self, transaction):
        pass


class LoggingNotifier(PaymentObserver, AlertSink):

    def on_completed(self, outcome):
        logger.info(f"[payment.completed] task={outcome.task_id} tx={outcome.tx_hash} "
                    f"block={outcome.block_number}")

    def on_failed(self, outcome):
        logger.error(f"[payment.failed] task={outcome.task_id} attempt={outcome.attempt} "
                     f"error={outcome.error}")

    def low_balance(self, project_id, balance, threshold):
        logger.warning(f"LOW BALANCE ALERT for project {project_id}: balance {balance} < {threshold}")

    def stale_transaction(self, transaction):
        logger.warning(f"STALE TRANSACTION {transaction.tx_hash} pending since "
                       f"{transaction.submitted_at}, flagged for manual review")


class WebhookNotifier(LoggingNotifier):
    """Logs every event and forwards it as JSON to an HTTP endpoint."""

    def __init__(self, url, timeout=10, session=None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def _post(self, event, data):
        try:
            resp = self.session.post(self.url, json={"event": event, **data}, timeout=self.timeout)
            if resp.status_code >= 400:
                logger.error(f"[webhook] {event} delivery failed: {resp.status_code}, {resp.text}")
        except requests.RequestException as e:
            logger.error(f"[webhook] {event} delivery error: {e}")

    def on_completed(self, outcome):
        super().on_completed(outcome)
        self._post("payment.completed", outcome.to_dict())

    def on_failed(self, outcome):
        super().on_failed(outcome)
        self._post("payment.failed", outcome.to_dict())

    def low_balance(self, project_id, balance, threshold):
        super().low_balance(project_id, balance, threshold)
        self._post("escrow.low_balance", {
            "project_id": project_id,
            "balance": str(balance),
            "threshold": str(threshold),
        })

    def stale_transaction(self, transaction):
        super().stale_transaction(transaction)
        self._post("transaction.stale", transaction.to_dict())
