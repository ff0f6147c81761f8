import os

from portal import create_app, db

config_name = os.environ.get('FLASK_ENV', 'production')
app = create_app(config_name)

# ── Startup schema check ──
# Hosts without shell access (Render, etc.) set AUTO_INIT_DB=1 so the
# tables exist before the first request.
if os.environ.get('AUTO_INIT_DB') == '1':
    with app.app_context():
        db.create_all()
        app.logger.info("Database tables checked on startup.")

if __name__ == "__main__":
    app.run()
