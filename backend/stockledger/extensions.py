# Overview: Flask extension instances for database and migrations.

import os

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate(directory=os.path.join(os.path.dirname(__file__), "migrations"))
