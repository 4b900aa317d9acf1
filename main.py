import hashlib
import json
import math
import os
import random
import sys
import time

import requests
from fastapi import FastAPI, Request
from loguru import logger
from starlette.concurrency import run_in_threadpool
from starlette.responses import JSONResponse, RedirectResponse
from models import (
    ConfigurationError,
    GatewayConfig,
    GatewayResult,
    OrderRequest,
    OrderValidationError,
)
from dotenv import load_dotenv

load_dotenv()

DEFAULT_GATEWAY_URL = "https://www.lg-pay.com/api/order/create"
MIN_AMOUNT = 1.0
MAX_AMOUNT = 100000.0
REMARK_MAX_LENGTH = 200
DEFAULT_REMARK = "web-order"


LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


def configure_logging(sink=sys.stderr) -> None:
    logger.remove()
    logger.add(
        sink,
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format=LOG_FORMAT,
    )


configure_logging()

app = FastAPI()


def load_config() -> GatewayConfig:
    """Read gateway settings from the environment on every call."""
    app_id = os.getenv("LG_APP_ID")
    secret_key = os.getenv("LG_SECRET_KEY")
    if not app_id or not secret_key:
        raise ConfigurationError("missing LG_APP_ID or LG_SECRET_KEY")

    timeout = os.getenv("GATEWAY_TIMEOUT")
    if timeout:
        try:
            timeout = float(timeout)
        except ValueError:
            raise ConfigurationError(f"invalid GATEWAY_TIMEOUT: {timeout}")
    else:
        timeout = None

    return GatewayConfig(
        app_id=app_id,
        secret_key=secret_key,
        notify_url=os.getenv("NOTIFY_URL") or "",
        gateway_url=os.getenv("GATEWAY_URL") or DEFAULT_GATEWAY_URL,
        timeout=timeout,
    )


def parse_amount(raw) -> float:
    if raw is None or str(raw).strip() == "":
        raise OrderValidationError("missing amount")

    try:
        amount = float(str(raw).strip())
    except ValueError:
        raise OrderValidationError("invalid amount")
    if math.isnan(amount) or amount <= 0:
        raise OrderValidationError("invalid amount")

    if amount < MIN_AMOUNT or amount > MAX_AMOUNT:
        raise OrderValidationError(f"amount must be between {MIN_AMOUNT} and {MAX_AMOUNT}")
    return amount


def to_minor_units(amount: float) -> int:
    # INR -> paise, half-up
    return math.floor(amount * 100 + 0.5)


def new_order_sn() -> str:
    return f"p{int(time.time() * 1000)}{random.randint(100, 999)}"


def normalize_remark(remark) -> str:
    if not remark:
        return DEFAULT_REMARK
    return str(remark)[:REMARK_MAX_LENGTH]


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return "0.0.0.0"


def build_order(config: GatewayConfig, amount: float, remark, ip: str) -> OrderRequest:
    return OrderRequest(
        app_id=config.app_id,
        order_sn=new_order_sn(),
        money=to_minor_units(amount),
        notify_url=config.notify_url,
        ip=ip,
        remark=normalize_remark(remark),
    )


def lg_sign(params: dict, key: str) -> str:
    """
    Build the lg-pay signature (uppercase MD5) for a parameter dict.
    1. Drop the ``sign`` field itself.
    2. Sort the remaining parameter names in ascending ASCII order.
    3. Join as ``a=b&c=d&...`` (values are not URL encoded).
    4. Append ``&key=<secret>`` and hash with MD5.

    :param params: order fields
    :param key: lg-pay merchant secret
    :return: uppercase hex digest
    """
    filtered_params = {k: v for k, v in params.items() if k != "sign"}
    sorted_keys = sorted(filtered_params.keys())
    sign_str = "&".join(f"{k}={filtered_params[k]}" for k in sorted_keys)
    sign_str_with_key = f"{sign_str}&key={key}"
    return hashlib.md5(sign_str_with_key.encode("utf-8")).hexdigest().upper()


def sign_order(order: OrderRequest, key: str) -> dict:
    payload = order.model_dump(exclude={"sign"})
    payload["sign"] = lg_sign(payload, key)
    return payload


def extract_pay_url(parsed, location=None):
    if isinstance(parsed, dict):
        data = parsed.get("data")
        if isinstance(data, dict) and (data.get("pay_url") or data.get("url")):
            return data.get("pay_url") or data.get("url")
        if parsed.get("pay_url"):
            return parsed["pay_url"]
    # gateway answered with a redirect instead of a body
    return location or None


def reject_constant(token):
    raise ValueError(f"non-standard JSON constant: {token}")


def submit_order(config: GatewayConfig, payload: dict) -> GatewayResult:
    response = requests.post(
        config.gateway_url,
        data=payload,
        headers={"Content-Type": "application/x-www-form-urlencoded"},
        allow_redirects=False,
        timeout=config.timeout,
    )

    text = response.text
    try:
        parsed = json.loads(text, parse_constant=reject_constant)
    except ValueError:
        parsed = None

    location = response.headers.get("Location")
    return GatewayResult(
        status_code=response.status_code,
        raw_text=text,
        parsed=parsed,
        location=location,
        pay_url=extract_pay_url(parsed, location),
    )


async def read_params(request: Request) -> dict:
    params = dict(request.query_params)
    if request.method != "POST":
        return params

    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            raise OrderValidationError("invalid request body")
        if isinstance(body, dict):
            params.update(body)
    else:
        form = await request.form()
        params.update(form)
    return params


@app.api_route("/api/create-order", methods=["GET", "POST"])
async def create_order(request: Request):
    try:
        params = await read_params(request)
        amount = parse_amount(params.get("amount"))
        config = load_config()

        order = build_order(config, amount, params.get("remark"), client_ip(request))
        payload = sign_order(order, config.secret_key)

        result = await run_in_threadpool(submit_order, config, payload)
        logger.info(
            "create-order: order_sn={} money={} gateway_status={} pay_url={}",
            order.order_sn, order.money, result.status_code, result.pay_url,
        )

        if result.pay_url:
            return RedirectResponse(result.pay_url, status_code=302)

        return JSONResponse({"raw_text": result.raw_text, "parsed": result.parsed})

    except OrderValidationError as e:
        return JSONResponse({"error": str(e)}, status_code=400)
    except ConfigurationError as e:
        logger.error("create-order config error: {}", e)
        return JSONResponse({"error": "server misconfigured", "detail": str(e)}, status_code=500)
    except Exception as e:
        logger.exception("create-order error: {}", e)
        return JSONResponse({"error": "internal_error", "detail": str(e)}, status_code=500)
