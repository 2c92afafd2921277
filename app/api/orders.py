"""Order API endpoints"""

from fastapi import APIRouter, Depends

from app.api.deps import get_order_materializer
from app.errors import NotFound
from app.schemas.order import OrderCreate, OrderRequest, OrderResponse
from app.services.orders import OrderMaterializer

router = APIRouter()


@router.post("", response_model=OrderResponse, status_code=201)
async def create_order(
    order_data: OrderRequest,
    orders: OrderMaterializer = Depends(get_order_materializer),
):
    """Create an order; repeating a payment reference returns the first order"""
    order = await orders.materialize(order_data.payment_reference, OrderCreate(**order_data.model_dump()))
    return OrderResponse.from_order(order)


@router.get("/payment-reference/{payment_reference}", response_model=OrderResponse)
async def get_order_by_payment_reference(
    payment_reference: str,
    orders: OrderMaterializer = Depends(get_order_materializer),
):
    """Look up the order created for a payment"""
    order = await orders.get_by_payment_reference(payment_reference)

    if not order:
        raise NotFound("Order not found", code="ORDER_NOT_FOUND")

    return OrderResponse.from_order(order)
