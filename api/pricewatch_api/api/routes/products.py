from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from pricewatch_api.api.deps import require_admin_token
from pricewatch_api.db.session import get_db
from pricewatch_api.schemas.recommendations import PriceHistoryOut
from pricewatch_api.services.recommendations import price_history

router = APIRouter(prefix="/v1/admin/products", tags=["products"], dependencies=[Depends(require_admin_token)])


@router.get("/{product_id}/price-history", response_model=list[PriceHistoryOut])
def product_price_history(product_id: str, db: Session = Depends(get_db)) -> list[PriceHistoryOut]:
    return price_history(db, product_id)
