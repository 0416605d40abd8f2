"""
Runtime configuration

Every setting is read once from the environment at import time. The database
and token settings are read by database.py and auth.py; the payment and
recommendation settings are passed in by main.py.
"""
import os

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

SECRET_KEY = os.getenv("SECRET_KEY", "supersecretkey")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24 * 7

PAYSTACK_PUBLIC_KEY = os.getenv("PAYSTACK_PUBLIC_KEY")
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "NGN")
SHIPPING_FEE = float(os.getenv("SHIPPING_FEE", "2000"))

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
GEMINI_API_URL = os.getenv(
    "GEMINI_API_URL",
    "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.0-flash:generateContent",
)
RECOMMENDATION_TIMEOUT = float(os.getenv("RECOMMENDATION_TIMEOUT", "10"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
