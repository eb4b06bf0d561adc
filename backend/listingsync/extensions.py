"""
Flask Extensions Initialization

Extension instances shared across the application, bound in create_app().
"""
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()

# Migrations live in backend/migrations ('flask db init' once, then 'flask db migrate')
migrate = Migrate()
