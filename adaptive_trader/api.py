"""
Control API
===========
Flask REST endpoints and Socket.IO push channel for the trading engine.

Every REST response has the shape {success, message, data}.
"""

from datetime import datetime
import logging

from flask import Flask, jsonify, request
from flask_socketio import SocketIO

from .config import TradingMode
from .monitoring.events import PublisherGroup, SocketIOPublisher

logger = logging.getLogger(__name__)


def _response(success: bool, message: str, data=None, status: int = 200):
    return jsonify({'success': success, 'message': message, 'data': data}), status


def create_app(engine, publishers: PublisherGroup = None, secret_key: str = 'adaptive_trader_secret'):
    """
    Build the Flask app and its SocketIO server around an engine.

    When `publishers` is given, a SocketIOPublisher is added to it so engine
    updates reach connected dashboard clients.

    Returns:
        (app, socketio)
    """
    app = Flask(__name__)
    app.config['SECRET_KEY'] = secret_key
    socketio = SocketIO(app, cors_allowed_origins="*")

    if publishers is not None:
        publishers.add(SocketIOPublisher(socketio))

    def _transition(action, done: str, refused: str):
        try:
            if action():
                return _response(True, done, engine.get_status())
            return _response(False, refused, engine.get_status(), 400)
        except Exception as e:
            logger.exception(f"Transition failed: {e}")
            return _response(False, f"Error: {e}", None, 500)

    @app.route('/api/trading/start', methods=['POST'])
    def start_trading():
        return _transition(engine.start, "Trading bot started successfully",
                           "Trading bot is already running")

    @app.route('/api/trading/stop', methods=['POST'])
    def stop_trading():
        return _transition(engine.stop, "Trading bot stopped successfully",
                           "Trading bot is not running")

    @app.route('/api/trading/pause', methods=['POST'])
    def pause_trading():
        return _transition(engine.pause, "Trading bot paused successfully",
                           "Trading bot is not running")

    @app.route('/api/trading/resume', methods=['POST'])
    def resume_trading():
        return _transition(engine.resume, "Trading bot resumed successfully",
                           "Trading bot is not paused")

    @app.route('/api/trading/mode/switch', methods=['POST'])
    def switch_mode():
        body = request.get_json(silent=True) or {}
        value = request.args.get('mode') or body.get('mode')
        if not value:
            return _response(False, "Missing 'mode' parameter", None, 400)
        try:
            mode = TradingMode(value.lower())
        except ValueError:
            return _response(False, f"Invalid mode: {value}", None, 400)

        engine.switch_mode(mode)
        return _response(True, f"Switched to {mode.value} mode", engine.get_status())

    @app.route('/api/trading/status')
    def trading_status():
        return _response(True, "Status retrieved", engine.get_status())

    @app.route('/api/trading/risk-status')
    def risk_status():
        balance = request.args.get('balance', type=float)
        status = engine.get_risk_status(balance)
        return _response(True, "Risk status retrieved", status.to_dict())

    @app.route('/api/trading/learning/<pair>')
    def learning_parameters(pair):
        params = engine.get_learning_parameters(pair)
        if params is None:
            return _response(False, f"No learning parameters for {pair}", None, 404)
        return _response(True, "Learning parameters retrieved", params.to_dict())

    @app.route('/api/trading/balances')
    def balances():
        return _response(True, "Balances retrieved", engine.get_portfolio())

    @app.route('/api/trading/trades')
    def trades():
        limit = request.args.get('limit', default=50, type=int)
        return _response(True, "Trades retrieved", engine.recent_trades(limit))

    @app.route('/api/health')
    def health_check():
        status = engine.get_status()
        return jsonify({
            'status': 'healthy',
            'engine_state': status['state'],
            'mode': status['mode'],
            'timestamp': datetime.now().isoformat()
        })

    @socketio.on('connect')
    def handle_connect():
        socketio.emit('bot_status', engine.get_status())

    @socketio.on('request_update')
    def handle_update_request():
        socketio.emit('bot_status', engine.get_status())
        socketio.emit('portfolio_update', engine.get_portfolio())

    return app, socketio
