from typing import Any, Optional
from pydantic import BaseModel


class OrderError(Exception):
    """Base error for order creation failures."""


class OrderValidationError(OrderError):
    pass


class ConfigurationError(OrderError):
    pass


class GatewayConfig(BaseModel):
    app_id: str
    secret_key: str
    notify_url: str = ""
    gateway_url: str = "https://www.lg-pay.com/api/order/create"
    timeout: Optional[float] = None            # None: rely on the platform request timeout


class OrderRequest(BaseModel):
    app_id: str                                # lg-pay merchant app id
    trade_type: str = "WEB"
    order_sn: str                              # locally generated order serial number
    money: int                                 # amount in paise
    notify_url: str = ""                       # async callback address passed to the gateway
    ip: str = "0.0.0.0"
    remark: str = "web-order"
    currency: str = "INR"
    sign: Optional[str] = None                 # set last, over every other field


class GatewayResult(BaseModel):
    status_code: int
    raw_text: str
    parsed: Any = None
    location: Optional[str] = None
    pay_url: Optional[str] = None
