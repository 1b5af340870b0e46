from coursedesk.models.app_settings import AppSettings
from coursedesk.models.group import Group
from coursedesk.models.participant import Participant

__all__ = ["AppSettings", "Group", "Participant"]
