from app.models.automation_run import AutomationRun
from app.models.email_automation import EmailAutomation
from app.models.email_log import EmailLog
from app.models.email_template import EmailTemplate
from app.models.itinerary import Itinerary
from app.models.profile import Profile
from app.models.saved_item import SavedItem

__all__ = [
    "AutomationRun",
    "EmailAutomation",
    "EmailLog",
    "EmailTemplate",
    "Itinerary",
    "Profile",
    "SavedItem",
]
