import os
from pathlib import Path

from dotenv import load_dotenv

# Load the .env file sitting next to this package, then anything in the cwd
env_path = Path(__file__).parent / ".env"
load_dotenv(env_path)
load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./classroom_relay.db")

# Zoom
ZOOM_WEBHOOK_SECRET_TOKEN = os.getenv("ZOOM_WEBHOOK_SECRET_TOKEN")
ZOOM_CLIENT_ID = os.getenv("client_id_Zoom")
ZOOM_CLIENT_SECRET = os.getenv("secret_zoom")
ZOOM_ACCOUNT_ID = os.getenv("ZOOM_ACCOUNT_ID")
ZOOM_DEFAULT_MEETING_ID = os.getenv("ZOOM_DEFAULT_MEETING_ID", "")

# Teamup calendar
TEAMUP_API_KEY = os.getenv("TEAMUP_API_KEY", "")
TEAMUP_CALENDAR_KEY = os.getenv("TEAMUP_CALENDAR_KEY", "")
TEAMUP_BASE_URL = os.getenv("TEAMUP_BASE_URL", "https://api.teamup.com")

# WhatsApp gateway (messaging + group rosters)
WHATSAPP_GATEWAY_URL = os.getenv("WHATSAPP_GATEWAY_URL", "http://localhost:3001")
WHATSAPP_GATEWAY_TOKEN = os.getenv("WHATSAPP_GATEWAY_TOKEN")

# Timers
EXECUTOR_INTERVAL_SECONDS = float(os.getenv("EXECUTOR_INTERVAL_SECONDS", "30"))
SEND_DELAY_SECONDS = float(os.getenv("SEND_DELAY_SECONDS", "1.5"))
KEEPALIVE_SECONDS = float(os.getenv("KEEPALIVE_SECONDS", "30"))
LIVE_GRACE_SECONDS = float(os.getenv("LIVE_GRACE_SECONDS", "60"))
REBUILD_WINDOW_MONTHS = int(os.getenv("REBUILD_WINDOW_MONTHS", "3"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]
