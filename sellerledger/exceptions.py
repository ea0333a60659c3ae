from typing import Optional


class SellerLedgerError(Exception):
    pass


class AccountNotFoundError(SellerLedgerError):
    def __init__(self, account_id):
        super().__init__(f"Account {account_id} not found")
        self.account_id = account_id


class UpstreamError(SellerLedgerError):
    """Upstream call failed in a way a retry will not fix."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientUpstreamError(UpstreamError):
    """Throttling, 5xx or network failure. Safe to retry the same request."""

    def __init__(self, message: str, status_code: Optional[int] = None, retry_after: Optional[float] = None):
        super().__init__(message, status_code)
        self.retry_after = retry_after


class ReportGenerationError(UpstreamError):
    def __init__(self, report_id: str, status: str):
        super().__init__(f"Report {report_id} finished with status {status}")
        self.report_id = report_id
        self.status = status


class ReportTimeoutError(SellerLedgerError):
    def __init__(self, report_id: str, attempts: int):
        super().__init__(
            f"Report {report_id} not ready after {attempts} poll attempts")
        self.report_id = report_id
        self.attempts = attempts
