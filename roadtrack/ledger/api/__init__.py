"""HTTP transport for the score ledger (aiohttp server, httpx client)."""
