"""Protean Engine runner for the warehouse domain.

Starts the Engine workers that process events asynchronously when the
domain runs with ``event_processing = "async"`` (the production overlay):
projectors for the fulfillment queue and pick session history.

Usage:
    python src/server.py
"""

import argparse
import asyncio

from protean.server.engine import Engine


def _get_domain():
    from warehouse.domain import warehouse

    warehouse.init()
    return warehouse


async def run():
    engine = Engine(_get_domain())
    await asyncio.gather(engine.run())


def main():
    argparse.ArgumentParser(description="Warehouse Engine runner").parse_args()
    asyncio.run(run())


if __name__ == "__main__":
    main()
