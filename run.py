# run.py
from nightlife.config import Config
from nightlife.main import app

if __name__ == "__main__":
    # Launch from the project root so the nightlife package resolves
    app.run(
        debug=Config.DEBUG,
        host=Config.FLASK_RUN_HOST,
        port=Config.FLASK_RUN_PORT,
        threaded=True,
    )
