import logging
from typing import Dict, Optional

logger = logging.getLogger(__name__)

UNKNOWN_NAME = "Unknown"


class IdentityResolver:
    """Looks up display names for participant ids."""

    def lookup(self, participant_id: str) -> str:
        """
        Return the display name.

        Raises LookupError for unknown ids. Remote resolvers may also raise
        ConnectionError or TimeoutError; both are treated as a missing name.
        """
        raise LookupError(participant_id)

    def display_name(self, participant_id: str) -> str:
        try:
            name = self.lookup(participant_id)
        except LookupError:
            logger.warning(f"No display name for participant {participant_id}")
            return UNKNOWN_NAME
        except (ConnectionError, TimeoutError) as e:
            logger.warning(f"Identity lookup failed for participant {participant_id}: {e}")
            return UNKNOWN_NAME
        return name or UNKNOWN_NAME


class DictIdentityResolver(IdentityResolver):
    def __init__(self, names: Optional[Dict[str, str]] = None):
        self.names = dict(names or {})

    def register(self, participant_id: str, display_name: str):
        self.names[participant_id] = display_name

    def lookup(self, participant_id: str) -> str:
        return self.names[participant_id]
