"""
Application entry point
Listing sync service - backend

Usage:
    python run.py              # plain Flask server
    python run.py --websocket  # Socket.IO server with live sync events

Environment:
    - put overrides in a .env file next to this script
    - see listingsync/config.py for the variables read
"""
import sys
import os

# Add the backend directory to the Python path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from dotenv import load_dotenv

load_dotenv()

if '--websocket' in sys.argv:
    os.environ['USE_WEBSOCKET'] = 'true'

from listingsync import create_app, socketio
from listingsync.config import get_config

config_class = get_config()

app = create_app(config_class)

if __name__ == '__main__':
    env = os.environ.get('FLASK_ENV', 'development')
    if env == 'production':
        config_class.validate()

    use_websocket = app.config.get('USE_WEBSOCKET', False)
    port = int(os.environ.get('PORT', '8000'))

    print("=" * 60)
    print("Listing sync service - backend")
    print("=" * 60)
    print(f"Server:      http://localhost:{port}")
    print(f"API:         http://localhost:{port}/api")
    print(f"Environment: {env}")
    print(f"Database:    {app.config['SQLALCHEMY_DATABASE_URI'].split('@')[-1]}")
    print(f"CORS:        {', '.join(config_class.CORS_ORIGINS)}")
    print(f"Rate limit:  {'redis' if app.config.get('REDIS_URL') else 'in-memory'} backend")
    print(f"WebSocket:   {'enabled' if use_websocket else 'disabled (use --websocket)'}")

    with app.app_context():
        from listingsync.utils.crypto import get_crypto
        if get_crypto().is_secure:
            print("Token encryption: enabled")
        else:
            print("Token encryption: DISABLED (set TOKEN_ENCRYPTION_KEY)")

    if app.config.get('CRON_SECRET'):
        print("Cron endpoints: enabled")
    else:
        print("Cron endpoints: disabled (set CRON_SECRET)")

    print("=" * 60)

    if use_websocket:
        socketio.run(app, host='0.0.0.0', port=port, debug=(env == 'development'),
                     allow_unsafe_werkzeug=True)
    else:
        app.run(host='0.0.0.0', port=port, debug=(env == 'development'), use_reloader=False)
