"""
Application settings

Values are read once from the environment (and a local .env file, if present).
"""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# Paystack
PAYSTACK_SECRET_KEY = os.getenv("PAYSTACK_SECRET_KEY", "")
PAYSTACK_PUBLIC_KEY = os.getenv("PAYSTACK_PUBLIC_KEY", "")
PAYSTACK_BASE_URL = os.getenv("PAYSTACK_BASE_URL", "https://api.paystack.co")
PAYMENT_CALLBACK_URL = os.getenv("PAYMENT_CALLBACK_URL")
PAYMENT_POLL_INTERVAL = float(os.getenv("PAYMENT_POLL_INTERVAL", 5))
PAYMENT_POLL_ATTEMPTS = int(os.getenv("PAYMENT_POLL_ATTEMPTS", 10))

# WhatsApp Business
WHATSAPP_ACCESS_TOKEN = os.getenv("WHATSAPP_ACCESS_TOKEN", "")
WHATSAPP_PHONE_NUMBER_ID = os.getenv("WHATSAPP_PHONE_NUMBER_ID", "")
WHATSAPP_BASE_URL = os.getenv("WHATSAPP_BASE_URL", "https://graph.facebook.com/v17.0")

# Orders
ORDER_NUMBER_PREFIX = os.getenv("ORDER_NUMBER_PREFIX", "GAB")
INCOMPLETE_ORDER_TTL_MINUTES = int(os.getenv("INCOMPLETE_ORDER_TTL_MINUTES", 15))

# Business details used in customer messages
BUSINESS_NAME = os.getenv("BUSINESS_NAME", "Gab'z Laundromat")
BUSINESS_PHONE = os.getenv("BUSINESS_PHONE", "")
BUSINESS_HOURS = os.getenv("BUSINESS_HOURS", "08:00-20:00")
BUSINESS_URL = os.getenv("BUSINESS_URL", "https://gabzlaundromat.com")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
PORT = int(os.getenv("PORT", 8000))
