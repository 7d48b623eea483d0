"""
Typed records for the lending and borrowing datasets.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, TypeAdapter


DateId = Annotated[str, StringConstraints(pattern=r"^\d{4}-\d{2}-\d{2}$")]

# Upstream publishes amounts as decimal strings, occasionally as bare numbers
Metric = Optional[Union[str, int, float]]


class Dataset(str, Enum):
    """Datasets republished by the service."""

    LENDING = "lending"
    BORROWING = "borrowing"

    def manifest_path(self) -> str:
        return f"meta/{self.value}_manifest.json"

    def daily_path(self, date: str) -> str:
        return f"data/{self.value}/{date}.json"


class Manifest(BaseModel):
    """Known state of one dataset: available dates and the latest one."""

    model_config = ConfigDict(frozen=True)

    latest: Optional[DateId] = None
    dates: Tuple[DateId, ...]
    updated_at: str
    schema_version: int

    @property
    def first_date(self) -> Optional[str]:
        return self.dates[0] if self.dates else None

    @property
    def last_date(self) -> Optional[str]:
        return self.dates[-1] if self.dates else None


class DatasetRow(BaseModel):
    """Fields shared by every row of either dataset."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    protocol: str
    date: str
    pool_id: str = Field(alias="poolId")
    pool_name: str = Field(alias="poolName")

    def to_payload(self) -> Dict[str, Any]:
        """Serialize back to the upstream shape: same keys, no added nulls, unknown fields kept."""
        return self.model_dump(by_alias=True, exclude_unset=True)


class LendingRow(DatasetRow):
    collateral_symbol: str = Field(alias="collateralSymbol")
    collateral_value: Metric = Field(default=None, alias="collateralValue")
    collateral_usd_value: Metric = Field(default=None, alias="collateralUsdValue")
    strk_allocation: Metric = Field(default=None, alias="strkAllocation")
    effective_apr: Metric = Field(default=None, alias="effectiveApr")


class BorrowingRow(DatasetRow):
    collateral_symbol: str = Field(alias="collateralSymbol")
    debt_symbol: str = Field(alias="debtSymbol")
    interest_usd: Metric = Field(default=None, alias="interestUsd")
    rebate_usd: Metric = Field(default=None, alias="rebateUsd")
    rebate_percent: Metric = Field(default=None, alias="rebatePercent")
    strk_allocation: Metric = Field(default=None, alias="strkAllocation")
    apr: Metric = None


ROW_ADAPTERS: Dict[Dataset, TypeAdapter] = {
    Dataset.LENDING: TypeAdapter(List[LendingRow]),
    Dataset.BORROWING: TypeAdapter(List[BorrowingRow]),
}
