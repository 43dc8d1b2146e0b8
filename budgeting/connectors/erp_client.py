import os
from datetime import date
from types import TracebackType
from typing import Any, Self

import httpx
from pydantic import BaseModel

__all__ = ["ErpClient", "ErpCredentials", "create_erp_client_from_env"]


class ErpCredentials(BaseModel):
    base_url: str
    token: str | None = None


class ErpClient:
    """Accounting-system API client: trial balance, currency, fiscal years.

    Timeouts: 5s connect, 15s read.
    """

    def __init__(self, credentials: ErpCredentials) -> None:
        self.credentials = credentials
        self.base_url = credentials.base_url.rstrip("/")
        headers = {"Accept": "application/json"}
        if credentials.token:
            headers["Authorization"] = f"Bearer {credentials.token}"
        self.client = httpx.Client(
            timeout=httpx.Timeout(connect=5.0, read=15.0, write=10.0, pool=10.0),
            headers=headers,
        )

    def _get(self, path: str, params: dict[str, str] | None = None) -> Any:  # noqa: ANN401
        response = self.client.get(f"{self.base_url}{path}", params=params)
        response.raise_for_status()
        return response.json()

    def get_trial_balance(self, start_date: date, end_date: date) -> dict[str, Any]:
        """Ledger balances grouped by chart: {"rows": {chart_id: [{id, balance}]}}."""
        data = self._get(
            "/accounting/v1/trial-balance",
            {"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )
        if not isinstance(data, dict):
            msg = f"Unexpected trial balance payload: {type(data).__name__}"
            raise TypeError(msg)
        return data

    def get_currency(self) -> str:
        """Configured currency code of the accounting system."""
        data = self._get("/accounting/v1/currency")
        return str(data["code"])

    def get_currency_symbol(self, code: str) -> str:
        data = self._get("/accounting/v1/currency/symbol", {"code": code})
        return str(data["symbol"])

    def get_fiscal_years(self) -> list[dict[str, Any]]:
        """Opening-balance year definitions: [{name, start_date, end_date}]."""
        data = self._get("/accounting/v1/opening-balances/names")
        return list(data) if isinstance(data, list) else []

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()


def create_erp_client_from_env() -> ErpClient | None:
    """Create ERP client from environment, or None when no API URL is set."""
    base_url = os.getenv("BUDGET_ERP_API_URL")
    if not base_url:
        return None
    credentials = ErpCredentials(
        base_url=base_url,
        token=os.getenv("BUDGET_ERP_API_TOKEN"),
    )
    return ErpClient(credentials)
