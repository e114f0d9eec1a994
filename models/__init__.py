from .listing import Listing  # noqa: F401
from .payments import ListingWebhookEvent  # noqa: F401
