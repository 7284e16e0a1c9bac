#Marks signals as a package.
#Re-exports the ingestion API (SignalEvent, SignalKind, SignalBus) so callers
#import from signals without knowing internal file names.
#No business logic.

from .models import SignalEvent, SignalKind
from .bus import SignalBus

__all__ = [
    "SignalEvent",
    "SignalKind",
    "SignalBus",
]
