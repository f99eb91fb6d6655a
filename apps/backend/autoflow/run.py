"""
Local entry point for the webhook server.

Twilio needs a public URL to reach the webhooks, so in development run
this behind a tunnel and point the number's SMS and voice URLs at
PUBLIC_BASE_URL.
"""
import uvicorn
from .config import settings  # ensures .env is loaded


def main():
    uvicorn.run(
        "autoflow.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=(settings.ENV == "development"),
        log_level=settings.LOG_LEVEL.lower(),
        proxy_headers=True,
        forwarded_allow_ips="*",
    )


if __name__ == "__main__":
    main()
