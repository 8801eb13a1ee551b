"""
Minimal Solana JSON-RPC client used by the perps scan.

Only two calls are needed: getProgramAccounts filtered by an account
discriminator, and getAccountInfo for oracle accounts.
"""

import base64
import http.client
import json
import logging
import time
from typing import List, Tuple
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

import base58

from perps_errors import TransportError

logger = logging.getLogger(__name__)


class SolanaRpc:
    """JSON-RPC client with backoff on rate limits."""

    def __init__(self, url: str, max_retries: int = 3, timeout: int = 30):
        self.url = url
        self.max_retries = max_retries
        self.timeout = timeout

    def call(self, method: str, params: list):
        """Make an RPC call and return its "result" member.

        HTTP 429, connection failures and truncated responses are retried
        with exponential backoff; an RPC error payload or an undecodable
        body is returned to the caller as a TransportError straight away.
        """
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        last_error = None

        for attempt in range(self.max_retries):
            req = Request(
                self.url,
                data=json.dumps(payload).encode("utf-8"),
                headers={"Content-Type": "application/json", "User-Agent": "Mozilla/5.0"}
            )
            try:
                with urlopen(req, timeout=self.timeout) as response:
                    result = json.loads(response.read().decode("utf-8"))
            except HTTPError as e:
                last_error = f"HTTP {e.code}: {e.reason}"
                if e.code == 429:
                    logger.warning(f"Rate limited on {method}, attempt {attempt + 1}/{self.max_retries}")
                else:
                    logger.error(f"HTTP error on {method} {e.code}: {e.reason}")
            except (URLError, TimeoutError, ConnectionError, http.client.HTTPException) as e:
                last_error = str(e)
                logger.error(f"RPC call {method} failed: {e}")
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise TransportError(f"{method}: invalid JSON response: {e}") from e
            else:
                if "error" in result:
                    raise TransportError(f"{method}: RPC error {result['error']}")
                return result.get("result")

            if attempt < self.max_retries - 1:
                time.sleep(2 ** attempt)  # 1, 2, 4 seconds

        raise TransportError(f"{method}: giving up after {self.max_retries} attempts ({last_error})")

    def get_program_accounts(self, program_id: str, discriminator: bytes) -> List[Tuple[str, bytes]]:
        """Fetch all accounts of a program whose data starts with discriminator."""
        config = {
            "encoding": "base64",
            "filters": [
                {"memcmp": {"offset": 0, "bytes": base58.b58encode(discriminator).decode("ascii")}}
            ],
        }
        result = self.call("getProgramAccounts", [program_id, config])
        if not isinstance(result, list):
            raise TransportError(f"getProgramAccounts: unexpected result {type(result).__name__}")

        accounts = []
        for item in result:
            try:
                data_b64 = item["account"]["data"][0]
                accounts.append((item["pubkey"], base64.b64decode(data_b64)))
            except (KeyError, IndexError, TypeError, ValueError) as e:
                raise TransportError(f"getProgramAccounts: malformed account entry: {e}") from e
        return accounts

    def get_account_data(self, address: str) -> bytes:
        """Fetch the raw data of a single account."""
        result = self.call("getAccountInfo", [address, {"encoding": "base64"}])
        value = (result or {}).get("value")
        if value is None:
            raise TransportError(f"getAccountInfo: account {address} not found")
        try:
            return base64.b64decode(value["data"][0])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise TransportError(f"getAccountInfo: malformed account data for {address}: {e}") from e
