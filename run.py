# run.py
from warranty_admin.config import Config
from warranty_admin.main import app

if __name__ == "__main__":
    app.run(
        debug=Config.DEBUG,
        host=Config.FLASK_RUN_HOST,
        port=Config.FLASK_RUN_PORT,
    )
