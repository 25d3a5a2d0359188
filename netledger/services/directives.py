"""
netledger Directive Service

Instructions raised against a running network (policy changes, new work,
aborts) that the planner picks up between steps.
"""

import uuid
from typing import Any, Dict, List, Optional

from netledger.db.database import DatabaseProtocol
from netledger.errors import EntityNotFoundError, ValidationError
from netledger.models.domain import DirectiveStatus, DirectiveType, NetworkDirective
from netledger.services.base import Service, ServiceContext


class DirectiveService(Service):
    """
    Service for network directives.

    Example:
        directives = DirectiveService(context, db)
        directive = directives.create("net-1", "Focus on EU markets", DirectiveType.POLICY_UPDATE)
        for pending in directives.list_unacknowledged("net-1"):
            directives.acknowledge(pending.directive_id)
    """

    def __init__(self, context: ServiceContext, db: DatabaseProtocol) -> None:
        super().__init__(context)
        self.db = db

    def create(
        self,
        network_id: str,
        content: str,
        directive_type: str = DirectiveType.OTHER,
        *,
        source: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> NetworkDirective:
        if not content:
            raise ValidationError("Directive content is required")
        if directive_type not in DirectiveType.ALL:
            raise ValidationError(f"Invalid directive type: {directive_type}")
        main = self.db.find_task(network_id)
        if main is None or not main.is_main:
            raise EntityNotFoundError(f"Network {network_id} not found", metadata={"network_id": network_id})
        directive = self.db.create_directive(
            directive_id=str(uuid.uuid4()),
            network_id=network_id,
            content=content,
            directive_type=directive_type,
            source=source,
            metadata=metadata,
        )
        self.logger.info(
            "directive_created",
            extra=self.log_extra(
                network_id=network_id,
                directive_id=directive.directive_id,
                directive_type=directive_type,
            ),
        )
        return directive

    def get(self, directive_id: str) -> NetworkDirective:
        return self.db.get_directive(directive_id)

    def list_for_network(self, network_id: str) -> List[NetworkDirective]:
        return self.db.list_directives(network_id)

    def list_pending(self, network_id: str) -> List[NetworkDirective]:
        """Directives not yet applied or rejected."""
        return self.db.list_directives(
            network_id, statuses=[DirectiveStatus.PENDING, DirectiveStatus.ACKNOWLEDGED]
        )

    def list_unacknowledged(self, network_id: str) -> List[NetworkDirective]:
        return self.db.list_directives(network_id, statuses=[DirectiveStatus.PENDING])

    def has_pending(self, network_id: str) -> bool:
        return bool(self.list_pending(network_id))

    def _transition(self, directive_id: str, status: str) -> NetworkDirective:
        directive = self.db.update_directive_status(directive_id, status)
        self.logger.info(
            "directive_status_changed",
            extra=self.log_extra(network_id=directive.network_id, directive_id=directive_id, status=status),
        )
        return directive

    def acknowledge(self, directive_id: str) -> NetworkDirective:
        return self._transition(directive_id, DirectiveStatus.ACKNOWLEDGED)

    def apply(self, directive_id: str) -> NetworkDirective:
        return self._transition(directive_id, DirectiveStatus.APPLIED)

    def reject(self, directive_id: str) -> NetworkDirective:
        return self._transition(directive_id, DirectiveStatus.REJECTED)
