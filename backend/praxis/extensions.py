# Overview: Flask extension instances for database and migrations.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate()

# Key under which the active notifier lives in app.extensions
NOTIFIER_EXTENSION_KEY = "praxis.notifier"
