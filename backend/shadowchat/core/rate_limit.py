# shadowchat/core/rate_limit.py

from slowapi import Limiter
from slowapi.util import get_remote_address

# Initialize limiter
limiter = Limiter(key_func=get_remote_address)

# Rate limit constants
REGISTER_LIMIT = "5/minute"
PUBLIC_KEY_LIMIT = "10/minute"
FILE_LIMIT = "60/minute"
