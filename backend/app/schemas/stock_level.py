from datetime import datetime

from pydantic import BaseModel, computed_field


class StockLevelRead(BaseModel):
    product_id: int
    warehouse_id: int

    qty_on_hand: int
    qty_reserved: int
    updated_at: datetime | None = None

    @computed_field
    @property
    def qty_available(self) -> int:
        return self.qty_on_hand - self.qty_reserved

    class Config:
        from_attributes = True
