# src/chartalerts/main.py
import asyncio

import structlog
from dotenv import load_dotenv

from chartalerts.config import config_from_env
from chartalerts.engine import AlertEngine
from chartalerts.ingest.price_ws import PriceFeedWS

load_dotenv()
log = structlog.get_logger()


async def main():
    cfg = config_from_env()

    # Feed → engine (single consumer keeps tick order per alert)
    q_prices = asyncio.Queue(maxsize=10_000)

    feed = PriceFeedWS(cfg.feed, q_prices)
    engine = AlertEngine(cfg)
    await engine.start()
    log.info("chartalerts_started", symbols=cfg.feed.symbols, alerts=len(engine.store),
             persistence=cfg.alerts_path or "off")

    try:
        await engine.consume(q_prices)
        await feed.start()
    finally:
        # feed first so no tick lands after the engine is torn down
        await feed.stop()
        await engine.stop()


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
