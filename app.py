from flask import Flask, request, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
import logging
from logging.handlers import RotatingFileHandler
import os

from config import ProductionConfig, get_config
from extensions import bcrypt, cors, jwt, limiter
from models import User, db, utcnow
from responses import error_response

logger = logging.getLogger(__name__)

# ============================================
# Logging 設定
# ============================================

def setup_logging(app):
    """
    設定 logging

    1. 分開 info 和 error logs
    2. 使用 RotatingFileHandler 避免 log 檔案過大
    3. 設定統一的 log format

    debug / testing 模式只輸出到 console
    """
    level = getattr(logging, app.config['LOG_LEVEL'].upper(), logging.INFO)
    formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )

    root = logging.getLogger()
    root.setLevel(level)

    if app.debug or app.testing:
        return

    log_dir = app.config['LOG_DIR']
    os.makedirs(log_dir, exist_ok=True)

    # Info log handler (記錄一般資訊)
    info_handler = RotatingFileHandler(
        os.path.join(log_dir, 'app.log'),
        maxBytes=10240000,  # 10MB
        backupCount=10
    )
    info_handler.setLevel(logging.INFO)
    info_handler.setFormatter(formatter)

    # Error log handler (只記錄錯誤)
    error_handler = RotatingFileHandler(
        os.path.join(log_dir, 'error.log'),
        maxBytes=10240000,  # 10MB
        backupCount=10
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)

    # 各模組的 logger 都會傳到 root
    root.addHandler(info_handler)
    root.addHandler(error_handler)

    app.logger.info('Application startup')


# ============================================
# JWT 設定
# ============================================

def register_jwt_callbacks(app):

    @jwt.user_lookup_loader
    def load_user(jwt_header, jwt_payload):
        """token 的 identity 轉成 User; 已刪除或停用的帳號視為無效"""
        user = db.session.get(User, jwt_payload['sub'])
        if user is None or not user.is_active:
            return None
        return user

    @jwt.user_lookup_error_loader
    def user_lookup_error_callback(jwt_header, jwt_payload):
        logger.warning(f"Token for missing or inactive user: {jwt_payload.get('sub')}")
        return error_response('User no longer exists or is deactivated', 401)

    @jwt.expired_token_loader
    def expired_token_callback(jwt_header, jwt_payload):
        """處理 token 過期"""
        logger.warning(f"Expired token attempt from: {request.remote_addr}")
        return error_response(
            'The token has expired. Please refresh your token or login again.', 401
        )

    @jwt.invalid_token_loader
    def invalid_token_callback(error):
        """處理無效的 token"""
        logger.warning(f"Invalid token attempt from: {request.remote_addr}, error: {error}")
        return error_response('Token validation failed. Please provide a valid token.', 401)

    @jwt.unauthorized_loader
    def unauthorized_callback(error):
        """處理缺少 token"""
        logger.warning(f"Unauthorized access attempt from: {request.remote_addr}, error: {error}")
        return error_response('Not authorized to access this route', 401)

    @jwt.revoked_token_loader
    def revoked_token_callback(jwt_header, jwt_payload):
        return error_response('The token has been revoked. Please login again.', 401)


# ============================================
# Request / Response hooks
# ============================================

def register_request_hooks(app):

    @app.before_request
    def log_request():
        """記錄每個請求"""
        if not app.debug:
            logger.info(f"Request: {request.method} {request.path} from {request.remote_addr}")

    @app.after_request
    def log_response(response):
        """記錄每個回應, 加上 security headers"""
        if not app.debug:
            logger.info(f"Response: {response.status_code} for {request.method} {request.path}")

        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['X-XSS-Protection'] = '1; mode=block'

        return response


# ============================================
# 基本路由
# ============================================

def register_base_routes(app):

    @app.route('/health', methods=['GET'])
    @limiter.exempt
    def health_check():
        """
        健康檢查端點

        用於 load balancer 或監控系統檢查服務是否正常
        """
        try:
            db.session.execute(text('SELECT 1'))
        except SQLAlchemyError as e:
            logger.error(f"Health check failed: {str(e)}")
            return jsonify({
                'status': 'unhealthy',
                'database': 'disconnected',
                'error': 'Database connection failed'
            }), 503

        return jsonify({
            'status': 'healthy',
            'database': 'connected',
            'timestamp': utcnow().isoformat()
        }), 200

    @app.route('/')
    def home():
        """API 首頁"""
        return jsonify({
            'message': 'Collaborative Task Manager API',
            'version': app.config['API_VERSION'],
            'endpoints': {
                'health': '/health',
                'auth': '/auth',
                'users': '/users',
                'projects': '/projects',
                'tasks': '/tasks'
            }
        })

    if app.debug:
        @app.route('/debug/routes')
        def debug_routes():
            """列出所有註冊的路由 (僅開發環境)"""
            routes = []
            for rule in app.url_map.iter_rules():
                routes.append({
                    'endpoint': rule.endpoint,
                    'methods': sorted(rule.methods),
                    'path': str(rule)
                })
            return jsonify({'routes': routes})


# ============================================
# App Factory
# ============================================

def create_app(config_name=None):
    """
    建立 Flask app

    Args:
        config_name: 'development' / 'production' / 'testing', 預設讀 FLASK_ENV
    """
    config_class = get_config(config_name)

    if issubclass(config_class, ProductionConfig):
        config_class.validate()

    app = Flask(__name__)
    app.config.from_object(config_class)

    setup_logging(app)

    # 擴展初始化
    db.init_app(app)
    jwt.init_app(app)
    bcrypt.init_app(app)
    limiter.init_app(app)
    cors.init_app(
        app,
        supports_credentials=True,
        origins=app.config['CORS_ORIGINS'],
        methods=['GET', 'POST', 'PUT', 'DELETE', 'OPTIONS'],
        allow_headers=['Content-Type', 'Authorization']
    )

    register_jwt_callbacks(app)

    from errors import register_error_handlers
    register_error_handlers(app)

    register_request_hooks(app)

    # 註冊 Blueprints
    from auth import auth_bp
    from users import users_bp
    from projects import projects_bp
    from tasks import tasks_bp

    app.register_blueprint(auth_bp, url_prefix='/auth')
    app.register_blueprint(users_bp, url_prefix='/users')
    app.register_blueprint(projects_bp, url_prefix='/projects')
    app.register_blueprint(tasks_bp, url_prefix='/tasks')

    register_base_routes(app)

    from commands import register_commands
    register_commands(app)

    # 資料庫初始化
    with app.app_context():
        db.create_all()
        logger.info('Database tables ready')

    return app


# ============================================
# 啟動應用
# ============================================

if __name__ == '__main__':
    # 在 production 環境不要用 Flask 內建的 server
    # 應該用 gunicorn 或 uwsgi
    app = create_app()
    port = int(os.getenv('FLASK_PORT', 5000))

    app.run(
        debug=app.config['DEBUG'],
        port=port,
        host='0.0.0.0'
    )
