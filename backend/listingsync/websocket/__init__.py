"""
WebSocket module - Socket.IO push of sync progress
"""
from flask_socketio import SocketIO, emit, join_room, leave_room

from ..utils.logger import get_logger

logger = get_logger('websocket')

# async_mode is auto-detected (threading unless eventlet/gevent is installed)
socketio = SocketIO(cors_allowed_origins="*")


def init_socketio(app):
    """Bind SocketIO to the Flask app"""
    socketio.init_app(app, cors_allowed_origins=app.config.get('CORS_ORIGINS') or "*")
    logger.info("[WebSocket] SocketIO initialized")
    return socketio


@socketio.on('connect')
def handle_connect():
    logger.info("[WebSocket] Client connected")
    emit('connected', {'status': 'ok', 'message': 'WebSocket connected'})


@socketio.on('disconnect')
def handle_disconnect(reason=None):
    logger.info("[WebSocket] Client disconnected")


@socketio.on('subscribe_sync')
def handle_subscribe_sync(data):
    """Join sync rooms

    Args:
        data: {'account_ids': [1, 2, 3]} or {'all': True}
    """
    data = data or {}
    if data.get('all'):
        join_room('sync_all')
        emit('subscribed', {'room': 'sync_all'})
        return
    account_ids = data.get('account_ids') or []
    for acc_id in account_ids:
        join_room(f'sync_{acc_id}')
    logger.info(f"[WebSocket] Client subscribed to accounts: {account_ids}")
    emit('subscribed', {'accounts': account_ids})


@socketio.on('unsubscribe_sync')
def handle_unsubscribe_sync(data):
    data = data or {}
    if data.get('all'):
        leave_room('sync_all')
        return
    for acc_id in data.get('account_ids') or []:
        leave_room(f'sync_{acc_id}')


def broadcast_to_account(event: str, account_id: int, payload: dict):
    """Emit to the account room and to the catch-all room"""
    data = {'account_id': account_id, **payload}
    socketio.emit(event, data, room=f'sync_{account_id}')
    socketio.emit(event, data, room='sync_all')
