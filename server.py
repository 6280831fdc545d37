import asyncio
import json
import logging
from typing import Any, Optional

from engine.interface import TradingInterface, translate_client_message
from engine.scheduler import PeriodicJob
from ledger.accounts import AccountStore
from ledger.book import OrderBook
from ledger.config import Settings
from ledger.errors import TradingError
from ledger.integrity import IntegrityVerifier
from ledger.persistence import DecimalEncoder, open_document
from ledger.quotes import QuoteService, QuoteSource, YahooQuoteSource
from ledger.trade import TradeEngine
from ledger.transactions import TransactionLedger

logger = logging.getLogger("server")

ACCOUNTS_FILE = "accounts.json"
ORDERS_FILE = "limit_orders.json"
TRANSACTIONS_FILE = "transactions.json"


# --- Server Logic ---


class TradingServer:
    """
    Asyncio-based paper-trading server handling multiple concurrent connections.
    Each client connection runs in its own task with shared state
    (accounts, order book, ledger). Two background jobs evaluate limit
    orders and sweep account integrity.
    """

    def __init__(self, settings: Settings, quote_source: Optional[QuoteSource] = None) -> None:
        self.settings = settings
        data_dir = settings.data_dir

        self.accounts = AccountStore(
            document=open_document(data_dir, ACCOUNTS_FILE, {}),
            purge_on_missing_name=settings.purge_on_missing_name,
        )
        self.ledger = TransactionLedger(open_document(data_dir, TRANSACTIONS_FILE, []))
        self.engine = TradeEngine(self.accounts, self.ledger)
        self.book = OrderBook(self.accounts, self.engine, open_document(data_dir, ORDERS_FILE, []))
        self.verifier = IntegrityVerifier(self.accounts)

        self._owns_source = quote_source is None
        self.quote_source = quote_source or YahooQuoteSource(
            url_template=settings.quote_url, timeout=settings.quote_timeout
        )
        self.quotes = QuoteService(self.quote_source, timeout=settings.quote_timeout)

        self.order_job = PeriodicJob(
            "limit-orders", settings.order_interval, lambda: self.book.evaluate(self.quotes)
        )
        self.integrity_job = PeriodicJob(
            "integrity-sweep", settings.integrity_interval, self._integrity_sweep
        )
        self.interface = TradingInterface(
            accounts=self.accounts,
            verifier=self.verifier,
            engine=self.engine,
            book=self.book,
            quotes=self.quotes,
            order_job=self.order_job,
        )

    async def _integrity_sweep(self) -> int:
        return len(self.verifier.run_sweep())

    async def handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        """
        Runs once for every connection.
        10 concurrent versions if 10 people connect.
        """
        addr = writer.get_extra_info("peername")
        logger.debug("[+] New connection from %s", addr)

        try:
            while True:
                # Wait for data (ending in \n)
                try:
                    data = await reader.readuntil(b"\n")
                except (
                    asyncio.IncompleteReadError,
                    ConnectionResetError,
                    BrokenPipeError,
                ):
                    break  # Client closed connection

                message = data.decode().strip()
                if not message:
                    continue  # Ignore empty lines/pings

                try:
                    request = json.loads(message)
                except json.JSONDecodeError:
                    logger.warning("[!] Invalid JSON from %s: %s", addr, message[:50])
                    resp: dict[str, Any] = {
                        "status": "error",
                        "error": "validation_error",
                        "message": "Invalid JSON",
                    }
                else:
                    resp = await self.process_request(request, addr)

                writer.write((json.dumps(resp, cls=DecimalEncoder) + "\n").encode())
                await writer.drain()

        except (ConnectionResetError, BrokenPipeError) as e:
            logger.info("[!] Connection lost with %s: %s", addr, e)
        except Exception:
            logger.exception("[!] Connection error with %s", addr)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionResetError, BrokenPipeError):
                pass
            logger.debug("[-] Client %s disconnected.", addr)

    async def process_request(self, request: Any, addr: Any) -> dict[str, Any]:
        """Translate the request and dispatch it to the interface."""
        if not isinstance(request, dict):
            return {"status": "error", "error": "validation_error", "message": "Expected a JSON object"}

        req_type = request.get("type")
        logger.debug("[%s] Request: %s", addr, req_type)

        if req_type == "ping":
            return {"type": "pong", "status": "ok"}

        try:
            cmd = translate_client_message(request)
        except TradingError as e:
            logger.info("[%s] Bad request: %s", addr, e.reason)
            return {"status": "error", "error": e.kind, "message": e.reason}

        response = await self.interface.execute(cmd)
        return response.to_dict()

    # --- Persistence ---

    def load_world(self) -> None:
        """Load accounts, pending orders and the transaction log."""
        logger.info("[*] Loading world state...")
        self.accounts.load()
        self.book.load()
        self.ledger.load()

        # Anything off at startup points at a hand-edited or torn file
        self.verifier.run_sweep()

    async def close(self) -> None:
        if self._owns_source and isinstance(self.quote_source, YahooQuoteSource):
            await self.quote_source.aclose()


# --- Main Entry Point ---


async def main() -> None:
    """Start the trading server and background jobs."""
    settings = Settings.from_env()
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    server = TradingServer(settings)
    server.load_world()

    tcp_server = await asyncio.start_server(server.handle_client, settings.host, settings.port)
    addrs = ", ".join(str(sock.getsockname()) for sock in tcp_server.sockets)
    logger.info("[*] Serving on %s", addrs)

    try:
        async with tcp_server:
            await asyncio.gather(
                tcp_server.serve_forever(),
                server.order_job.run_forever(),
                server.integrity_job.run_forever(),
            )
    finally:
        await server.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        # State is written through on every mutation; nothing to flush
        logger.info("[!] Server stopped.")
