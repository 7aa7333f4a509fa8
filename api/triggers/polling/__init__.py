"""Pull-based triggers: Airtable payload cursors and the Gmail sweep."""

from api.triggers.polling.scheduler import TriggerPollScheduler

__all__ = ["TriggerPollScheduler"]
