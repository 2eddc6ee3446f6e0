from storefront import create_app, db
import os

config_name = os.environ.get('FLASK_ENV', 'production')
app = create_app(config_name)

# Make sure the schema exists on first boot (hosts without shell access).
with app.app_context():
    db.create_all()
    app.logger.info(f"Storefront back-office started with '{config_name}' config.")

if __name__ == "__main__":
    app.run()
