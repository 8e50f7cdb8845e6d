import sentry_sdk

from app.settings import settings


def init_sentry():
    if not settings.SENTRY_DSN:
        return

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        # Proxied URLs and headers may carry credentials
        send_default_pii=False,
        environment=settings.SENTRY_ENVIRONMENT,
    )
