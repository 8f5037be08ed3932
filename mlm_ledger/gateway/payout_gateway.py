# mlm_ledger/gateway/payout_gateway.py
"""
Client for the external payout gateway used by auto withdrawals.
"""
import asyncio
import aiohttp
import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

import config
from mlm_ledger.errors import ExternalGatewayFailure

logger = logging.getLogger(__name__)


@dataclass
class GatewayResult:
    success: bool
    txHash: Optional[str] = None
    message: Optional[str] = None
    raw: dict = field(default_factory=dict)


class PayoutGateway:
    """
    POSTs a withdrawal to the gateway.

    Answers with success true/false are returned as GatewayResult; transport
    errors, timeouts and unreadable answers raise ExternalGatewayFailure,
    since then the outcome is unknown.
    """

    def __init__(self, url: str = None, apiKey: str = None, timeout: int = None):
        self.url = url or config.PAYOUT_GATEWAY_URL
        self.apiKey = apiKey if apiKey is not None else config.PAYOUT_GATEWAY_API_KEY
        self.timeout = timeout or config.PAYOUT_GATEWAY_TIMEOUT

    async def initiateWithdrawal(self, uuid: str, chain: str, to: str, token: str,
                                 amount: Decimal, memo: str) -> GatewayResult:
        payload = {
            "uuid": uuid,
            "chain": chain,
            "to": to,
            "token": token,
            "amount": float(amount),
            "memo": memo
        }
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self.apiKey
        }

        logger.info(f"Payout gateway request {uuid}: {amount} {token} on {chain} to {to}")

        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.url, json=payload, headers=headers) as response:
                    text = await response.text()
                    status = response.status
        except asyncio.TimeoutError:
            logger.warning(f"Payout gateway timeout for {uuid}")
            raise ExternalGatewayFailure(f"Gateway timeout for {uuid}")
        except aiohttp.ClientError as e:
            logger.warning(f"Payout gateway transport error for {uuid}: {e}")
            raise ExternalGatewayFailure(f"Gateway transport error: {e}")

        try:
            data = json.loads(text)
        except ValueError:
            logger.warning(f"Payout gateway returned non-JSON answer for {uuid} (HTTP {status})")
            raise ExternalGatewayFailure(f"Unreadable gateway answer, HTTP {status}")

        if not isinstance(data, dict):
            raise ExternalGatewayFailure(f"Unexpected gateway answer, HTTP {status}")

        return self.parseResponse(data)

    @staticmethod
    def parseResponse(data: dict) -> GatewayResult:
        if data.get("success") is True:
            txHash = (data.get("data") or {}).get("txhash")
            return GatewayResult(success=True, txHash=txHash, message=data.get("message"), raw=data)

        message = data.get("error") or data.get("message") or "Gateway rejected withdrawal"
        return GatewayResult(success=False, message=message, raw=data)
