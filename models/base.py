"""
Shared database handle for the models package.

``set_db`` assigns the Flask-SQLAlchemy instance here before any model
module is imported.
"""

db = None
