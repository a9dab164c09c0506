from flask import Flask, request, jsonify, current_app
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
from config import get_config
from extensions import jwt, bcrypt, limiter
from models import db
from sqlalchemy import text
from datetime import datetime
import logging
from logging.handlers import RotatingFileHandler
import os

# ============================================
# Logging 設定
# ============================================

LOG_FORMAT = '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 10

# 不記錄 request log 的路徑 (監控每幾秒打一次)
QUIET_PATHS = {'/health'}


def rotating_handler(log_dir, filename, level):
    handler = RotatingFileHandler(
        os.path.join(log_dir, filename),
        maxBytes=LOG_MAX_BYTES,
        backupCount=LOG_BACKUP_COUNT
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def setup_logging(app):
    """
    設定 logging

    各模組用 logging.getLogger(__name__),全部掛在 root logger 上。
    debug / testing 只輸出到 console,其他環境另外寫入
    LOG_DIR/app.log (INFO 以上) 和 LOG_DIR/error.log (ERROR 以上)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, app.config['LOG_LEVEL'].upper(), logging.INFO))

    if app.debug or app.testing:
        return

    log_dir = app.config['LOG_DIR']
    os.makedirs(log_dir, exist_ok=True)

    root_logger.addHandler(rotating_handler(log_dir, 'app.log', logging.INFO))
    root_logger.addHandler(rotating_handler(log_dir, 'error.log', logging.ERROR))

    app.logger.info(f"Agileboard API {app.config['API_VERSION']} starting, logs in {log_dir}")

# ============================================
# JWT 錯誤處理
# ============================================

def register_jwt_callbacks():

    @jwt.expired_token_loader
    def expired_token_callback(jwt_header, jwt_payload):
        current_app.logger.warning(f"Expired token attempt from: {request.remote_addr}")
        return jsonify({'error': 'Session expired. Please log in again.'}), 401

    @jwt.invalid_token_loader
    def invalid_token_callback(error):
        current_app.logger.warning(f"Invalid token attempt from: {request.remote_addr}, error: {error}")
        return jsonify({'error': 'Invalid session token'}), 401

    @jwt.unauthorized_loader
    def unauthorized_callback(error):
        return jsonify({'error': 'Authentication required'}), 401

    @jwt.revoked_token_loader
    def revoked_token_callback(jwt_header, jwt_payload):
        return jsonify({'error': 'Session revoked. Please log in again.'}), 401

# ============================================
# 全域錯誤處理
# ============================================

def register_error_handlers(app):

    @app.errorhandler(400)
    def bad_request(error):
        return jsonify({'error': 'The request is malformed or invalid'}), 400

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'The requested resource does not exist'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'error': 'The HTTP method is not allowed for this endpoint'}), 405

    @app.errorhandler(429)
    def rate_limit_exceeded(error):
        app.logger.warning(f"Rate limit exceeded from: {request.remote_addr}")
        return jsonify({'error': 'Too many requests. Please try again later.'}), 429

    @app.errorhandler(500)
    def internal_server_error(error):
        """不洩漏錯誤細節給前端,完整 stack trace 只寫到 log"""
        db.session.rollback()
        app.logger.error(f"Internal server error: {str(error)}", exc_info=True)
        return jsonify({'error': 'An internal error occurred'}), 500

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        """最後的防線,其他 HTTP 錯誤照原本的 status code 回傳"""
        if isinstance(error, HTTPException):
            return jsonify({'error': error.description}), error.code

        db.session.rollback()
        app.logger.error(f"Unexpected error: {str(error)}", exc_info=True)
        return jsonify({'error': 'An unexpected error occurred. Please try again later.'}), 500

# ============================================
# App factory
# ============================================

def create_app(config_class=None):
    app = Flask(__name__)
    app.config.from_object(config_class or get_config())

    # 不要用 '*',從設定讀取允許的來源
    CORS(app,
         supports_credentials=True,
         origins=app.config['CORS_ORIGINS'],
         methods=['GET', 'POST', 'PUT', 'PATCH', 'DELETE', 'OPTIONS'],
         allow_headers=['Content-Type', 'Authorization', 'X-CSRF-TOKEN'])

    db.init_app(app)
    jwt.init_app(app)
    bcrypt.init_app(app)
    limiter.init_app(app)

    setup_logging(app)
    register_jwt_callbacks()
    register_error_handlers(app)

    from auth import auth_bp
    from users import users_bp
    from projects import projects_bp
    from tasks import tasks_bp
    from invitations import invitations_bp

    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(users_bp, url_prefix='/api/user')
    app.register_blueprint(projects_bp, url_prefix='/api/projects')
    app.register_blueprint(tasks_bp, url_prefix='/api/tasks')
    app.register_blueprint(invitations_bp, url_prefix='/api')

    with app.app_context():
        db.create_all()

    # ============================================
    # Request/Response Logging
    # ============================================

    @app.before_request
    def log_request():
        if not app.debug and request.path not in QUIET_PATHS:
            app.logger.info(f"{request.method} {request.path} from {request.remote_addr}")

    @app.after_request
    def log_response(response):
        if not app.debug and request.path not in QUIET_PATHS:
            level = logging.WARNING if response.status_code >= 400 else logging.INFO
            app.logger.log(level, f"{response.status_code} for {request.method} {request.path}")

        # security headers
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'

        return response

    # ============================================
    # Health Check Endpoint
    # ============================================

    @app.route('/health', methods=['GET'])
    @limiter.exempt
    def health_check():
        """給 load balancer 或監控系統用"""
        body = {
            'version': app.config['API_VERSION'],
            'timestamp': datetime.utcnow().isoformat()
        }
        try:
            db.session.execute(text('SELECT 1'))
        except Exception as e:
            db.session.rollback()
            app.logger.error(f"Health check: database unreachable: {str(e)}")
            body.update(status='unhealthy', database='disconnected',
                        error='Database connection failed')
            return jsonify(body), 503

        body.update(status='healthy', database='connected')
        return jsonify(body), 200

    @app.route('/')
    def home():
        return jsonify({
            'message': 'Agileboard API',
            'version': app.config['API_VERSION'],
            'endpoints': {
                'health': '/health',
                'auth': '/api/auth',
                'user': '/api/user',
                'projects': '/api/projects',
                'tasks': '/api/tasks',
                'invitations': '/api/invite/:token'
            }
        })

    return app

# ============================================
# 啟動應用
# ============================================

if __name__ == '__main__':
    # production 環境應該用 gunicorn: gunicorn "app:create_app()"
    config_class = get_config()
    config_class.validate()

    port = int(os.getenv('FLASK_PORT', 4000))
    create_app(config_class).run(
        debug=config_class.DEBUG,
        port=port,
        host='0.0.0.0'
    )
