import logging
import os

from dotenv import load_dotenv

load_dotenv()

from tenant_billing import create_app  # noqa: E402

config = os.getenv("APP_ENV", "production")

app = create_app(config)

logging.getLogger(__name__).info(f"[BOOT] Running in {config} mode")
