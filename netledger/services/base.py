"""
netledger Service Base

``ServiceContext`` carries configuration and the correlation id shared by a
set of services; ``Service`` gives each one a named logger and ``log_extra``.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from netledger.config import Config
from netledger.logging import get_logger, log_extra


@dataclass(frozen=True)
class ServiceContext:
    """
    Shared, immutable service dependencies.

    Attributes:
        config: Application configuration
        request_id: Correlation id stamped on every log record of the services
    """
    config: Config
    request_id: Optional[str] = None


class Service:
    """
    Base class for netledger services.

    Example:
        class ReportService(Service):
            def publish(self, network_id: str) -> None:
                self.logger.info("report_published", extra=self.log_extra(network_id=network_id))
    """

    def __init__(self, context: ServiceContext) -> None:
        self.context = context
        self.config = context.config
        self.logger = get_logger(f"netledger.{type(self).__name__}")

    def log_extra(self, *, request_id: Optional[str] = None, **fields: Any) -> Dict[str, Any]:
        """``log_extra`` with the context's request id unless one is given."""
        return log_extra(request_id=request_id or self.context.request_id, **fields)
