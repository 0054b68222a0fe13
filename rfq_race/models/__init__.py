"""Database models — re-exports all models.

Import from here:  from rfq_race.models import Rfq, Provider, ...
Or from submodules: from rfq_race.models.rfq import Rfq
"""

from .base import Base  # noqa: F401

# Supplier directory (read-only to the race engine)
from .suppliers import Provider  # noqa: F401

# RFQs, broadcasts, responses
from .rfq import Rfq, RfqBroadcast, RfqResponse  # noqa: F401

# Audit trail
from .activity import RaceActivity  # noqa: F401
