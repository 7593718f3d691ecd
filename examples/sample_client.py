"""
Sample Python client for the Trading Data API Gatekeeper.

Demonstrates common workflows:
- Authenticating with an API key
- Reading the X-RateLimit-* quota headers
- Backing off on 429 using resetAt / Retry-After
- Telling authentication, tier and quota failures apart

Requirements:
    pip install httpx python-dotenv
"""

import asyncio
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
from dotenv import load_dotenv


class TradingAPIClient:
    """
    Async client for the gated trading-data API.

    Handles authentication, rate-limit backoff and server-error retries.
    """

    def __init__(self, api_key: str, base_url: str = "http://localhost:8000") -> None:
        """
        Initialize the API client.

        Args:
            api_key: API key (``mk_live_...`` or ``mk_test_...``)
            base_url: Base URL of the gatekeeper
        """
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=30.0,
        )
        self.quota: Dict[str, str] = {}

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> "TradingAPIClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    @staticmethod
    def backoff_seconds(response: httpx.Response) -> float:
        """Seconds to wait after a 429, from resetAt or Retry-After."""
        try:
            reset_at = response.json().get("resetAt")
        except ValueError:
            reset_at = None
        if reset_at:
            reset = datetime.fromisoformat(reset_at.replace("Z", "+00:00"))
            return max(1.0, (reset - datetime.now(timezone.utc)).total_seconds())
        return float(response.headers.get("Retry-After", "60"))

    async def get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        max_retries: int = 3,
        max_wait: float = 60.0,
    ) -> Dict[str, Any]:
        """
        GET a gated endpoint with backoff on 429 and retries on 5xx.

        A 429 that would require waiting longer than ``max_wait`` (an
        exhausted daily quota, typically) is raised instead of slept on.

        Raises:
            httpx.HTTPStatusError: If the request fails after retries
        """
        for attempt in range(max_retries):
            response = await self.client.get(path, params=params)
            self.quota = {
                name: value
                for name, value in response.headers.items()
                if name.lower().startswith("x-ratelimit-")
            }

            if response.status_code == 429:
                wait = self.backoff_seconds(response)
                if wait > max_wait or attempt == max_retries - 1:
                    response.raise_for_status()
                print(f"Rate limited. Waiting {wait:.0f}s...", file=sys.stderr)
                await asyncio.sleep(wait)
                continue

            if response.status_code >= 500 and attempt < max_retries - 1:
                wait_time = 2**attempt
                print(
                    f"Server error. Retry {attempt + 1}/{max_retries} in {wait_time}s...",
                    file=sys.stderr,
                )
                await asyncio.sleep(wait_time)
                continue

            response.raise_for_status()
            return response.json()

        raise RuntimeError("Max retries exceeded")


async def example_fetch_opportunities(client: TradingAPIClient) -> None:
    """Example: fetch data and report the remaining quota."""
    print("\n=== Example 1: Fetch Opportunities ===")

    data = await client.get("/api/v1/opportunities", params={"limit": 5})
    print(f"Received {len(data.get('data', []))} opportunities")
    print(f"  Limit: {client.quota.get('x-ratelimit-limit')}")
    print(f"  Remaining today: {client.quota.get('x-ratelimit-remaining')}")


async def example_error_handling(client: TradingAPIClient) -> None:
    """Example: what each rejection looks like."""
    print("\n=== Example 2: Error Handling ===")

    try:
        await client.get("/api/v1/analysis/deep/BTCUSDT")
    except httpx.HTTPStatusError as e:
        body = e.response.json()
        if e.response.status_code == 403:
            print(f"Tier too low (expected on free): {body['error']}")
        elif e.response.status_code == 401:
            print(f"Key rejected: {body['error']}")
        elif e.response.status_code == 429:
            print(f"Quota exhausted until {body.get('resetAt')}")
        else:
            raise


async def main() -> None:
    """Run the examples against a local gatekeeper."""
    load_dotenv()
    api_key = os.getenv("TRADING_API_KEY")

    if not api_key:
        print("Error: TRADING_API_KEY not set in environment", file=sys.stderr)
        print("Set it in .env file or export TRADING_API_KEY=mk_live_...")
        sys.exit(1)

    base_url = os.getenv("TRADING_API_URL", "http://localhost:8000")
    async with TradingAPIClient(api_key=api_key, base_url=base_url) as client:
        await example_fetch_opportunities(client)
        await example_error_handling(client)

    print("\n=== All examples completed ===")


if __name__ == "__main__":
    asyncio.run(main())
