from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from app.core.utils import s, to_number

DEFAULT_TIME = "00:00:00"

# Korean labels found in partitions written before the English tags
LEGACY_TYPE_LABELS = {"입금": "deposit", "출금": "withdrawal"}
TRANSACTION_TYPES = ("deposit", "withdrawal")

Amount = Union[int, float]


class MergeMode(str, Enum):
    MERGE = "merge"
    REPLACE = "replace"


class IncomeRecord(BaseModel):
    """Canonical transaction record as stored in a month partition."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field("", alias="_id")
    date: str = ""
    time: str = DEFAULT_TIME
    datetime: str = ""
    accountNo: str = ""
    holder: str = ""
    category: str = ""
    inAmt: Amount = 0
    outAmt: Amount = 0
    balance: Amount = 0
    record: str = ""
    memo: str = ""
    seq: str = Field("", alias="_seq")
    type: Literal["deposit", "withdrawal", ""] = ""
    unconfirmed: bool = False
    monthKey: str = ""

    @model_validator(mode="before")
    @classmethod
    def _normalize_type(cls, data: Any) -> Any:
        # Legacy labels map to tags; any other label is re-derived from the amounts
        if not isinstance(data, dict) or "type" not in data:
            return data
        label = s(data["type"])
        tx_type = LEGACY_TYPE_LABELS.get(label, label)
        if tx_type and tx_type not in TRANSACTION_TYPES:
            if to_number(data.get("inAmt")) > 0:
                tx_type = "deposit"
            elif to_number(data.get("outAmt")) > 0:
                tx_type = "withdrawal"
            else:
                tx_type = ""
        return {**data, "type": tx_type}

    def to_blob(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class PartitionMeta(BaseModel):
    updatedAt: int = 0


class MonthPartition(BaseModel):
    """One month of records, persisted as <prefix>/<YYYY-MM>.json."""

    meta: PartitionMeta = Field(default_factory=PartitionMeta)
    items: dict[str, IncomeRecord]

    def to_blob(self) -> dict[str, Any]:
        return {
            "meta": self.meta.model_dump(),
            "items": {key: item.to_blob() for key, item in self.items.items()},
        }


class StatementMeta(BaseModel):
    accountNo: str = ""
    holder: str = ""


class ImportRequest(BaseModel):
    sourceUrl: str = Field(
        ...,
        validation_alias=AliasChoices("sourceUrl", "downloadUrl"),
        description="Downloadable URL of the statement spreadsheet.",
    )
    recentMonths: Optional[int] = Field(None, ge=0)


class ImportResponse(BaseModel):
    ok: bool = True
    total: int
    hotSaved: int
    coldSaved: int
    months: dict[str, int] = {}


class MigrateResponse(BaseModel):
    ok: bool = True
    migrated: int
    lastDocId: str
    loops: int
    dryRun: bool
    fromMonth: str
    toMonth: str
    failedMonths: list[str] = []


class ErrorResponse(BaseModel):
    ok: Literal[False] = False
    error: str
    lastDocId: Optional[str] = None
    migrated: Optional[int] = None
