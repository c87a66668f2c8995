#!/usr/bin/env python3
"""
Treatment sheet backend
Flask application serving the dosing engine API
"""

import logging
import os

from flask import Flask, jsonify
from flask_cors import CORS

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_app() -> Flask:
    """Application factory"""
    app = Flask(__name__)
    CORS(app)

    from api.treatment_api import treatment_api
    app.register_blueprint(treatment_api)
    logger.info("Treatment API registered successfully")

    @app.route('/api/health')
    def health():
        return jsonify({"status": "healthy"})

    return app


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 8084))
    create_app().run(host='0.0.0.0', port=port, debug=os.environ.get('FLASK_DEBUG') == '1')
