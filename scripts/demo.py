from pathlib import Path
import logging
import sys
import random

# Make src modules discoverable
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

import market_sim as sim  # type: ignore
from market_logging import configure_logging  # type: ignore
from market_register import load_registry  # type: ignore

import matplotlib.pyplot as plt

logger = logging.getLogger("demo")


def trade_randomly(engine: sim.MarketEngine, rng: random.Random) -> None:
    """A stand-in player: one buy or sell at a random market most weeks."""
    if rng.random() < 0.3:
        return
    location_id = rng.choice(list(engine.locations))
    commodity = rng.choice(engine.visible_commodities())
    stock = engine.get_inventory(location_id, commodity.id).quantity
    if rng.random() < 0.5 and stock > 0:
        qty = rng.randint(1, int(stock))
        engine.execute_trade(location_id, commodity.id, qty, "buy")
    else:
        qty = rng.randint(1, int(commodity.canonical_availability[1]))
        engine.execute_trade(location_id, commodity.id, qty, "sell")


def run_simulation(weeks: int = 200, seed: int = 42, location_id: str = "earth") -> None:
    """Run the market with a random trader and plot price and stock per commodity."""
    registry = load_registry()
    engine = sim.MarketEngine.from_registry(registry, seed=seed, revealed_tier=2)
    rng = random.Random(seed)

    plt.ion()
    fig, (ax_prices, ax_stock) = plt.subplots(2, 1, sharex=True)
    goods = [c.id for c in engine.visible_commodities()]
    price_lines = {cid: ax_prices.plot([], [], label=cid)[0] for cid in goods}
    stock_lines = {cid: ax_stock.plot([], [], label=cid)[0] for cid in goods}
    stock_history = {cid: [] for cid in goods}
    days = []

    ax_prices.set_ylabel("Price / galactic avg")
    ax_prices.set_title(f"Market at {location_id}")
    ax_prices.legend()
    ax_stock.set_xlabel("Day")
    ax_stock.set_ylabel("Stock")

    for _ in range(weeks):
        trade_randomly(engine, rng)
        engine.advance_week()
        days.append(engine.state.day)

        for cid in goods:
            history = engine.get_price_history(location_id, cid)
            avg = engine.get_galactic_average(cid)
            price_lines[cid].set_data([s.day for s in history], [s.price / avg for s in history])
            stock_history[cid].append(engine.get_inventory(location_id, cid).quantity)
            stock_lines[cid].set_data(days, stock_history[cid])

        state = engine.active_system_state
        logger.info("Day %4d [%s] %s", engine.state.day, state.id if state else "-",
                    ", ".join(f"{cid}: {engine.get_price(location_id, cid)}" for cid in goods))

        for ax in (ax_prices, ax_stock):
            ax.relim()
            ax.autoscale_view()
        plt.pause(0.001)

    plt.ioff()
    plt.show()


if __name__ == "__main__":
    configure_logging()
    run_simulation()
