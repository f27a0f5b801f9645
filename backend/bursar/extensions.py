# Overview: Shared Flask-SQLAlchemy and Flask-Migrate instances for the finance ledger.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
# Batch mode so ALTERs in finance migrations also work on SQLite.
migrate = Migrate(render_as_batch=True)
