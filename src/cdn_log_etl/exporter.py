# src/cdn_log_etl/exporter.py

import logging

from .clients import LivepeerApiClient
from .exceptions import ExportError, get_error_context
from .schemas import ExportPayload

logger = logging.getLogger(__name__)


class Exporter:
    """
    Pushes a flattened window aggregate to the Livepeer API. Delivery is best
    effort: a failure is logged and reported through the return value.
    """

    def __init__(self, api_client: LivepeerApiClient):
        self._api = api_client

    def export(self, payload: ExportPayload) -> bool:
        """Returns True when the payload was accepted or had nothing to send."""
        if not payload.data:
            return True
        try:
            self._api.post_cdn_data(payload)
        except ExportError as e:
            logger.error("Error posting data to API", extra=get_error_context(e))
            return False
        logger.info(
            "Exported hourly usage",
            extra={
                "region": payload.region,
                "date": payload.date,
                "records": len(payload.data),
                "file_name": payload.file_name,
            },
        )
        return True
