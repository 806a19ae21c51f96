from flask_bcrypt import Bcrypt
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

# ============================================
# 擴展實例 (在 create_app() 中綁定到 app)
# ============================================

jwt = JWTManager()
bcrypt = Bcrypt()
cors = CORS()

# Rate Limiting
# storage / default limits 由 app.config 的 RATELIMIT_* 提供
limiter = Limiter(key_func=get_remote_address)
