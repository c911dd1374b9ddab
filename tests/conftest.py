import os

# flask_app builds its engine at import time; keep it off the real database file.
os.environ.setdefault("DATABASE_URL", "sqlite://")
