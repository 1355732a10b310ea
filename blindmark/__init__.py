"""Application factory – creates and configures the Flask app."""

from flask import Flask, jsonify

from blindmark.watermark.errors import InvalidInput


def create_app(config_name: str = "config.DevelopmentConfig") -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_name)

    # Register blueprints
    from blindmark.api.routes import api_bp

    app.register_blueprint(api_bp)

    # ----- Error handlers -----
    @app.errorhandler(InvalidInput)
    def invalid_input(e):
        app.logger.warning(f"Rejected input: {e}")
        return jsonify({"error": str(e)}), 422

    @app.errorhandler(400)
    def bad_request(e):
        return jsonify({"error": getattr(e, "description", "Bad request")}), 400

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(413)
    def too_large(e):
        limit = app.config.get("MAX_CONTENT_LENGTH")
        return jsonify({"error": "File too large", "max_bytes": limit}), 413

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal server error"}), 500

    # ----- Health check endpoint (used by Docker / load balancers) -----
    @app.route("/health")
    def health_check():
        """Lightweight health probe — returns 200 if app is alive."""
        return jsonify({"status": "healthy"}), 200

    return app
