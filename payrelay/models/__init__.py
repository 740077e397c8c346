# Models package: import every model here so Alembic can discover them.

from payrelay.models.payment import Payment  # noqa: F401
from payrelay.models.rate_window import RateWindow  # noqa: F401
