"""
extensions.py - Flask Extensions
Initialize Flask extensions here to avoid circular imports.
Extensions are created here but initialized in app.py with init_app().
"""

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

# Database ORM shared by models and services
db = SQLAlchemy()

# Database Migration Tool
# Usage: flask db init, flask db migrate, flask db upgrade
migrate = Migrate()
