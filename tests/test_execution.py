import pytest

from adaptive_trader.config import TradingMode
from adaptive_trader.execution import ExecutionEngine, MockExchange
from adaptive_trader.ledger import VirtualLedger
from adaptive_trader.signals import Action


@pytest.fixture
def exchange():
    exchange = MockExchange({'USDT': 1000.0}, slippage=0.0)
    exchange.connect()
    exchange.set_market_prices({'BTC-USDT': 100.0})
    return exchange


class TestMockExchange:
    def test_requires_connection(self):
        exchange = MockExchange()
        exchange.set_market_prices({'BTC-USDT': 100.0})

        assert exchange.place_order('BTC-USDT', 'BUY', 1.0) == (False, "Not connected to exchange")

    def test_buy_then_sell(self, exchange):
        ok, order_id = exchange.place_order('BTC-USDT', 'buy', 2.0)
        assert ok and order_id
        assert exchange.get_balance('USDT') == 800.0
        assert exchange.get_balance('BTC') == 2.0

        exchange.set_market_prices({'BTC-USDT': 150.0})
        assert exchange.place_order('BTC-USDT', 'SELL', 1.0)[0]
        assert exchange.get_balance('USDT') == 950.0

    def test_rejects_unpriced_and_unfunded_orders(self, exchange):
        assert exchange.place_order('ETH-USDT', 'BUY', 1.0)[0] is False
        assert exchange.place_order('BTC-USDT', 'BUY', 100.0)[0] is False
        assert exchange.place_order('BTC-USDT', 'SELL', 1.0)[0] is False
        assert exchange.orders == []

    def test_slippage(self):
        exchange = MockExchange(slippage=0.01)
        exchange.connect()
        exchange.set_market_prices({'BTC-USDT': 100.0})

        exchange.place_order('BTC-USDT', 'BUY', 1.0)

        assert exchange.orders[0]['price'] == pytest.approx(101.0)


class TestExecutionEngine:
    def test_virtual_order(self):
        engine = ExecutionEngine(MockExchange())
        ledger = VirtualLedger("USDT", 100.0)

        result = engine.execute("BTC-USDT", Action.BUY, 0.5, 100.0, TradingMode.SHADOW, ledger)

        assert result.success
        assert result.order_id.startswith("VIRTUAL_")
        assert len(result.order_id) == len("VIRTUAL_") + 8
        assert result.confidence == 0.9
        assert ledger.available("USDT") == 50.0
        assert engine.recent_orders() == [result]

    def test_virtual_order_with_insufficient_funds(self):
        engine = ExecutionEngine(MockExchange())
        ledger = VirtualLedger("USDT", 10.0)

        result = engine.execute("BTC-USDT", Action.BUY, 1.0, 100.0, TradingMode.SHADOW, ledger)

        assert not result.success
        assert result.order_id is None
        assert result.confidence == 0.0

    def test_virtual_order_without_ledger(self):
        result = ExecutionEngine(MockExchange()).execute(
            "BTC-USDT", Action.BUY, 1.0, 100.0, TradingMode.SHADOW, None
        )
        assert not result.success

    def test_real_order(self, exchange):
        engine = ExecutionEngine(exchange)

        result = engine.execute("BTC-USDT", Action.BUY, 1.0, 100.0, TradingMode.PRODUCTION)

        assert result.success
        assert result.confidence == 0.8
        assert result.to_dict()['mode'] == "production"
        assert engine.get_balance('USDT') == 900.0

    def test_exchange_rejection_is_a_failed_result(self, exchange):
        engine = ExecutionEngine(exchange)

        result = engine.execute("BTC-USDT", Action.SELL, 1.0, 100.0, TradingMode.PRODUCTION)

        assert not result.success
        assert "Insufficient BTC" in result.message

    def test_update_market_prices_feeds_mock_exchange(self):
        exchange = MockExchange()
        engine = ExecutionEngine(exchange)
        engine.update_market_prices({'ETH-USDT': 3000.0})
        assert exchange.market_prices == {'ETH-USDT': 3000.0}

    def test_initialize_and_shutdown(self):
        exchange = MockExchange()
        engine = ExecutionEngine(exchange)

        assert engine.initialize()
        assert exchange.connected
        engine.shutdown()
        assert not exchange.connected
